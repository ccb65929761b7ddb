"""Tests for due-configuration selection and scheduler ticks.

**Feature: calendar-sync, Property 12: One failing configuration never stops a tick**
"""

from datetime import datetime, timedelta

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from calsync.models.config import AppConfig, SyncSettings
from calsync.models.sync_config import Plan, SyncFrequency, SyncStatus
from calsync.storage.stores import ConfigurationStore, OrganizationStore
from calsync.sync.models import SyncRunResult
from calsync.sync.scheduler import PlanGate, Scheduler
from conftest import FIXED_NOW, SyncHarness, make_configuration


class StubEngine:
    """Engine double that records passes and fails on request."""

    def __init__(self, crash_ids: set[str] = frozenset(), error_ids: set[str] = frozenset()):
        self.crash_ids = crash_ids
        self.error_ids = error_ids
        self.ran: list[str] = []

    def run_once(self, configuration_id: str) -> SyncRunResult:
        self.ran.append(configuration_id)
        if configuration_id in self.crash_ids:
            raise RuntimeError(f"crash in {configuration_id}")
        errors = ["Calendar API returned 500"] if configuration_id in self.error_ids else []
        return SyncRunResult(sync_config_id=configuration_id, started_at=FIXED_NOW, errors=errors)


def new_scheduler(database, engine, max_configs: int = 50) -> Scheduler:
    settings = AppConfig(sync=SyncSettings(max_configs_per_run=max_configs))
    return Scheduler(database, engine, settings)


class TestDueSelection:
    def test_never_synced_configuration_is_due(self, database) -> None:
        ConfigurationStore(database).save(make_configuration())

        scheduler = new_scheduler(database, StubEngine())

        assert [c.id for c in scheduler.select_due(FIXED_NOW)] == ["cfg_1"]

    @pytest.mark.parametrize(
        "plan, frequency, elapsed_minutes, due",
        [
            (Plan.FREE, SyncFrequency.EVERY_15_MINUTES, 15, False),
            (Plan.FREE, SyncFrequency.EVERY_15_MINUTES, 1440, True),
            (Plan.PRO, SyncFrequency.EVERY_15_MINUTES, 14, False),
            (Plan.PRO, SyncFrequency.EVERY_15_MINUTES, 15, True),
            (Plan.PRO, SyncFrequency.HOURLY, 30, False),
            (Plan.PRO, SyncFrequency.HOURLY, 60, True),
            (Plan.PRO, SyncFrequency.DAILY, 60, False),
        ],
    )
    def test_interval_is_the_slower_of_plan_and_frequency(
        self, database, plan: Plan, frequency: SyncFrequency, elapsed_minutes: int, due: bool
    ) -> None:
        OrganizationStore(database).set_plan("org_1", plan)
        configuration = make_configuration(
            sync_frequency=frequency,
            last_sync_at=FIXED_NOW - timedelta(minutes=elapsed_minutes),
        )

        scheduler = new_scheduler(database, StubEngine())

        assert scheduler.is_due(configuration, FIXED_NOW) is due

    def test_paused_and_disabled_configurations_are_skipped(self, database) -> None:
        store = ConfigurationStore(database)
        store.save(make_configuration("paused", status=SyncStatus.PAUSED))
        store.save(make_configuration("disabled", is_enabled=False))
        store.save(make_configuration("errored", status=SyncStatus.ERROR))

        scheduler = new_scheduler(database, StubEngine())

        assert [c.id for c in scheduler.select_due(FIXED_NOW)] == ["errored"]

    def test_naive_timestamps_are_read_as_utc(self, database) -> None:
        configuration = make_configuration(last_sync_at=datetime(2026, 2, 28, 11, 0))

        scheduler = new_scheduler(database, StubEngine())

        assert scheduler.is_due(configuration, FIXED_NOW)

    def test_plan_intervals(self) -> None:
        assert PlanGate.sync_interval_minutes(Plan.FREE) == 1440
        assert PlanGate.sync_interval_minutes(Plan.PRO) == 15


class TestSchedulerTick:
    """Test Property 12: One failing configuration never stops a tick."""

    @given(crashing=st.sets(st.sampled_from(["c0", "c1", "c2", "c3", "c4"])))
    @settings(
        max_examples=20, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture]
    )
    def test_crashes_are_isolated(self, database, crashing: set[str]) -> None:
        store = ConfigurationStore(database)
        for i in range(5):
            store.save(make_configuration(f"c{i}"))
        engine = StubEngine(crash_ids=crashing)

        report = new_scheduler(database, engine).run_due(FIXED_NOW)

        assert sorted(engine.ran) == [f"c{i}" for i in range(5)]
        assert sorted(report.crashed_ids) == sorted(crashing)
        assert report.processed_count == 5
        assert report.failed_count == len(crashing)

    def test_tick_is_capped_and_the_rest_deferred(self, database) -> None:
        store = ConfigurationStore(database)
        for i in range(5):
            store.save(
                make_configuration(f"c{i}", last_sync_at=FIXED_NOW - timedelta(days=2, minutes=i))
            )
        engine = StubEngine()

        report = new_scheduler(database, engine, max_configs=3).run_due(FIXED_NOW)

        assert engine.ran == ["c4", "c3", "c2"]
        assert (report.due_count, report.deferred_count) == (5, 2)

    def test_reported_errors_count_as_failures(self, database) -> None:
        store = ConfigurationStore(database)
        store.save(make_configuration("ok"))
        store.save(make_configuration("bad"))

        report = new_scheduler(database, StubEngine(error_ids={"bad"})).run_due(FIXED_NOW)

        assert report.processed_count == 2
        assert report.failed_count == 1
        assert report.crashed_ids == []

    def test_synced_configuration_waits_for_its_interval(self, harness, settings) -> None:
        harness.add_configuration()
        scheduler = Scheduler(harness.database, harness.engine, settings, clock=harness.clock)

        assert scheduler.run_due().processed_count == 1
        harness.clock.advance(hours=1)
        assert scheduler.run_due().processed_count == 0
        harness.clock.advance(days=1)
        assert scheduler.run_due().processed_count == 1


def test_every_due_configuration_gets_a_harness_pass(database, settings) -> None:
    harness = SyncHarness(database, settings)
    harness.add_configuration(config_id="a")
    harness.add_configuration(config_id="b")

    report = Scheduler(database, harness.engine, settings, clock=harness.clock).run_due()

    assert [r.sync_config_id for r in report.results] == ["a", "b"]
    assert all(r.success for r in report.results)
    assert harness.configs.get("a").last_sync_at == FIXED_NOW
