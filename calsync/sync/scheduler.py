"""Scheduler: picks the configurations due for a pass and runs them."""

from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from calsync.models.config import AppConfig
from calsync.models.sync_config import Plan, SyncConfiguration, SyncStatus
from calsync.storage.database import SyncDatabase
from calsync.storage.stores import ConfigurationStore, OrganizationStore
from calsync.sync.engine import SyncEngine
from calsync.sync.models import SchedulerReport

log = structlog.stdlib.get_logger()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PlanGate:
    """Sync limits granted by each subscription plan."""

    SYNC_INTERVAL_MINUTES: dict[Plan, int] = {
        Plan.FREE: 1440,
        Plan.PRO: 15,
    }

    def __init__(self, organizations: OrganizationStore):
        self._organizations = organizations

    @classmethod
    def sync_interval_minutes(cls, plan: Plan) -> int:
        """Shortest time between two passes allowed by a plan."""
        return cls.SYNC_INTERVAL_MINUTES[plan]

    def effective_interval(self, configuration: SyncConfiguration) -> timedelta:
        """
        Interval between passes for a configuration.

        The user's chosen frequency can only slow syncs down; the plan sets
        the floor.
        """
        plan = self._organizations.get_plan(configuration.org_id)
        minutes = max(self.sync_interval_minutes(plan), configuration.sync_frequency.interval_minutes)
        return timedelta(minutes=minutes)


class Scheduler:
    """Selects due configurations and runs them sequentially."""

    def __init__(
        self,
        database: SyncDatabase,
        engine: SyncEngine,
        settings: AppConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize scheduler.

        Args:
            database: Sync state database
            engine: Engine that runs each pass
            settings: Application settings (defaults used when None)
            clock: Source of "now" when a tick is not given one
        """
        self._configs = ConfigurationStore(database)
        self._plan_gate = PlanGate(OrganizationStore(database))
        self._engine = engine
        self._settings = settings or AppConfig()
        self._clock = clock

    def is_due(self, configuration: SyncConfiguration, now: datetime) -> bool:
        if not configuration.is_enabled or configuration.status == SyncStatus.PAUSED:
            return False
        if configuration.last_sync_at is None:
            return True
        last = configuration.last_sync_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return now - last >= self._plan_gate.effective_interval(configuration)

    def select_due(self, now: datetime | None = None) -> list[SyncConfiguration]:
        """
        Enabled, unpaused configurations whose interval has elapsed.

        Never-synced configurations come first, then the longest-waiting.

        Args:
            now: Reference time (defaults to the clock)

        Returns:
            Due configurations in processing order
        """
        now = now or self._clock()
        due = [c for c in self._configs.list_enabled() if self.is_due(c, now)]
        log.info("due_configs_selected", due_count=len(due))
        return due

    def run_due(self, now: datetime | None = None) -> SchedulerReport:
        """
        Run every due configuration, up to the per-tick cap.

        A configuration whose pass raises is logged and skipped; the tick
        carries on with the next one.

        Args:
            now: Reference time (defaults to the clock)

        Returns:
            SchedulerReport for the tick
        """
        due = self.select_due(now)
        cap = self._settings.sync.max_configs_per_run
        batch = due[:cap]
        report = SchedulerReport(due_count=len(due), deferred_count=len(due) - len(batch))

        if report.deferred_count:
            log.warning("due_configs_deferred", deferred_count=report.deferred_count, cap=cap)

        for configuration in batch:
            try:
                result = self._engine.run_once(configuration.id)
            except Exception as e:
                log.exception(
                    "scheduled_sync_crashed",
                    sync_config_id=configuration.id,
                    error=str(e),
                )
                report.crashed_ids.append(configuration.id)
                continue
            report.results.append(result)

        log.info(
            "scheduler_tick_completed",
            due_count=report.due_count,
            processed_count=report.processed_count,
            failed_count=report.failed_count,
            deferred_count=report.deferred_count,
        )
        return report
