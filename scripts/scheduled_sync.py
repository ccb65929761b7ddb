#!/usr/bin/env python3
"""
Scheduled synchronization script for the calendar sync worker.

This script runs reconciliation passes:
- Runs every configuration that is due (default), or one configuration on demand
- Optionally purges cancelled ledger rows older than a number of days
- Logs synchronization statistics

Designed to be run on a schedule (e.g., every 15 minutes via cron).

Usage:
    python scripts/scheduled_sync.py [--config CONFIG_PATH] [--config-id ID] [--full-sync]
                                     [--purge-cancelled-days DAYS]
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone

import structlog

from calsync.storage.database import SyncDatabase
from calsync.storage.ledger import LedgerStore
from calsync.storage.stores import ConfigurationStore
from calsync.sync.engine import SyncEngine
from calsync.sync.scheduler import Scheduler
from calsync.utils.config_loader import ConfigLoader
from calsync.utils.errors import CalendarSyncError
from calsync.utils.logging_config import configure_logging

log = structlog.stdlib.get_logger()


def perform_sync(
    config_path: str | None = None,
    config_id: str | None = None,
    full_sync: bool = False,
    purge_cancelled_days: int | None = None,
) -> dict:
    """
    Run one scheduler tick or a single on-demand pass.

    Args:
        config_path: Optional path to configuration file
        config_id: Run only this configuration, regardless of its schedule
        full_sync: Drop the stored sync token first (single configuration only)
        purge_cancelled_days: Purge cancelled ledger rows older than this many days

    Returns:
        Dictionary with sync statistics
    """
    start_time = datetime.now(timezone.utc)

    try:
        config = ConfigLoader().load_config(config_path)
        configure_logging(
            log_level=config.logging.log_level,
            json_logs=config.logging.json_logs,
            log_file=config.logging.log_file,
        )

        log.info(
            "scheduled_sync_started",
            mode="single" if config_id else "due",
            full_sync=full_sync,
        )

        with SyncDatabase(config.storage.database_path) as database:
            engine = SyncEngine(database, config)
            stats: dict = {"success": True, "start_time": start_time.isoformat()}

            if config_id:
                if full_sync:
                    _reset_sync_token(database, config_id)
                result = engine.run_once(config_id)
                stats.update(
                    mode="single",
                    configs_processed=1,
                    configs_failed=0 if result.success else 1,
                    events_added=result.events_added,
                    events_updated=result.events_updated,
                    events_deleted=result.events_deleted,
                    errors=result.errors,
                )
                stats["success"] = result.success
            else:
                report = Scheduler(database, engine, config).run_due()
                stats.update(
                    mode="due",
                    configs_due=report.due_count,
                    configs_processed=report.processed_count,
                    configs_failed=report.failed_count,
                    configs_deferred=report.deferred_count,
                    events_added=sum(r.events_added for r in report.results),
                    events_updated=sum(r.events_updated for r in report.results),
                    events_deleted=sum(r.events_deleted for r in report.results),
                )
                stats["success"] = report.failed_count == 0

            if purge_cancelled_days is not None:
                cutoff = datetime.now(timezone.utc) - timedelta(days=purge_cancelled_days)
                stats["ledger_rows_purged"] = LedgerStore(database).purge_cancelled(config_id, cutoff)

        end_time = datetime.now(timezone.utc)
        stats["end_time"] = end_time.isoformat()
        stats["duration_seconds"] = (end_time - start_time).total_seconds()

        log.info("scheduled_sync_completed", **{k: v for k, v in stats.items() if k != "errors"})
        return stats

    except CalendarSyncError as e:
        end_time = datetime.now(timezone.utc)
        log.error("scheduled_sync_failed", error=str(e))
        return {
            "success": False,
            "error": str(e),
            "start_time": start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "duration_seconds": (end_time - start_time).total_seconds(),
        }


def _reset_sync_token(database: SyncDatabase, config_id: str) -> None:
    configs = ConfigurationStore(database)
    configuration = configs.get(config_id)
    if configuration is None:
        return
    configs.save(configuration.model_copy(update={"sync_token": None}))
    log.info("sync_token_reset", sync_config_id=config_id)


def main():
    """Main entry point for scheduled sync script."""
    parser = argparse.ArgumentParser(description="Scheduled synchronization for calendar sync")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--config-id",
        type=str,
        help="Run a single sync configuration now instead of the due set",
        default=None,
    )
    parser.add_argument(
        "--full-sync",
        action="store_true",
        help="With --config-id, discard the stored sync token and do a bounded full pull",
    )
    parser.add_argument(
        "--purge-cancelled-days",
        type=int,
        help="Delete cancelled ledger rows older than this many days",
        default=None,
    )

    args = parser.parse_args()

    if args.full_sync and not args.config_id:
        parser.error("--full-sync requires --config-id")

    stats = perform_sync(
        config_path=args.config,
        config_id=args.config_id,
        full_sync=args.full_sync,
        purge_cancelled_days=args.purge_cancelled_days,
    )

    print("\n" + "=" * 60)
    print("SYNCHRONIZATION SUMMARY")
    print("=" * 60)

    if "error" in stats:
        print("Status: ✗ FAILED")
        print(f"Error: {stats['error']}")
    else:
        print(f"Status: {'✓ SUCCESS' if stats['success'] else '✗ COMPLETED WITH ERRORS'}")
        print(f"Mode: {stats.get('mode', 'unknown')}")
        if stats.get("mode") == "due":
            print(f"Configurations Due: {stats.get('configs_due', 0)}")
            print(f"Configurations Deferred: {stats.get('configs_deferred', 0)}")
        print(f"Configurations Processed: {stats.get('configs_processed', 0)}")
        print(f"Configurations Failed: {stats.get('configs_failed', 0)}")
        print(f"Events Added: {stats.get('events_added', 0)}")
        print(f"Events Updated: {stats.get('events_updated', 0)}")
        print(f"Events Deleted: {stats.get('events_deleted', 0)}")
        for error in stats.get("errors", []):
            print(f"Error: {error}")
        if "ledger_rows_purged" in stats:
            print(f"Ledger Rows Purged: {stats['ledger_rows_purged']}")
    print(f"Duration: {stats.get('duration_seconds', 0):.2f} seconds")

    print("=" * 60)

    sys.exit(0 if stats.get("success") else 1)


if __name__ == "__main__":
    main()
