"""Tests for the scheduled sync entry point."""

import importlib.util
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import structlog

from calsync.models.sync_config import LedgerStatus, SyncedEventRecord
from calsync.storage.database import SyncDatabase
from calsync.storage.ledger import LedgerStore, new_record_id
from calsync.storage.stores import ConfigurationStore
from conftest import make_configuration

SCRIPT = Path(__file__).parent.parent / "scripts" / "scheduled_sync.py"


def load_script():
    spec = importlib.util.spec_from_file_location("scheduled_sync", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def scheduled_sync():
    yield load_script()
    structlog.reset_defaults()


@pytest.fixture
def worker_config(tmp_path) -> tuple[str, Path]:
    db_path = tmp_path / "state.db"
    config_path = tmp_path / "worker.yaml"
    config_path.write_text(
        f"storage:\n  database_path: {db_path}\nlogging:\n  log_level: WARNING\n"
    )
    return str(config_path), db_path


def test_empty_tick_succeeds(scheduled_sync, worker_config) -> None:
    config_path, _ = worker_config

    stats = scheduled_sync.perform_sync(config_path=config_path)

    assert stats["success"] is True
    assert stats["mode"] == "due"
    assert stats["configs_processed"] == 0


def test_unknown_configuration_fails(scheduled_sync, worker_config) -> None:
    config_path, _ = worker_config

    stats = scheduled_sync.perform_sync(config_path=config_path, config_id="missing")

    assert stats["success"] is False
    assert "not found" in stats["errors"][0]


def test_full_sync_drops_the_stored_token(scheduled_sync, worker_config) -> None:
    config_path, db_path = worker_config
    with SyncDatabase(db_path) as database:
        ConfigurationStore(database).save(make_configuration(sync_token="tok_old"))

    # No credentials are stored, so the pass itself fails after the reset
    stats = scheduled_sync.perform_sync(config_path=config_path, config_id="cfg_1", full_sync=True)

    assert stats["configs_failed"] == 1
    with SyncDatabase(db_path) as database:
        assert ConfigurationStore(database).get("cfg_1").sync_token is None


def test_old_cancelled_rows_are_purged(scheduled_sync, worker_config) -> None:
    config_path, db_path = worker_config
    with SyncDatabase(db_path) as database:
        ConfigurationStore(database).save(make_configuration(is_enabled=False))
        LedgerStore(database).upsert(
            SyncedEventRecord(
                id=new_record_id(),
                sync_config_id="cfg_1",
                external_event_id="gone",
                sheet_row_number=2,
                status=LedgerStatus.CANCELLED,
                last_synced_at=datetime.now(timezone.utc) - timedelta(days=90),
            )
        )

    stats = scheduled_sync.perform_sync(config_path=config_path, purge_cancelled_days=30)

    assert stats["ledger_rows_purged"] == 1


def test_missing_config_file_is_reported(scheduled_sync, tmp_path) -> None:
    stats = scheduled_sync.perform_sync(config_path=str(tmp_path / "absent.yaml"))

    assert stats["success"] is False
    assert "not found" in stats["error"]
