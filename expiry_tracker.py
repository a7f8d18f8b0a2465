#!/usr/bin/env python3
"""
Fleet Document Expiry Tracker

Reads the fleet document register (Google Sheet), works out how close every
insurance / fitness / permit document is to expiry, and sends:
  1. A daily digest email grouped by urgency (expired, in grace, under
     inspection, close to expiry)
  2. Threshold alerts when a document reaches 30 / 14 / 7 / 1 days left,
     by email plus optional WhatsApp/SMS and Slack

Meant to be run once a day from cron; repeated runs on the same day are no-ops.

Usage:
  python expiry_tracker.py --dry-run              # print everything, send nothing
  python expiry_tracker.py                        # digest + alerts
  python expiry_tracker.py --digest-only          # daily digest only
  python expiry_tracker.py --alerts-only          # threshold alerts only
  python expiry_tracker.py --date 2026-11-01      # simulate another day
  python expiry_tracker.py --force                # run even if already ran today
"""

import argparse
import logging
import os
import ssl
from datetime import date, datetime

import certifi

from alerts import find_due_alerts, send_threshold_alerts
from audit_log import SheetAuditLog, get_or_create_log_tab
from config import ConfigError, Settings, load_settings
from digest import aggregate
from documents import process_rows
from notify import Notifier, alert_recipients, digest_recipients, send_digests
from run_guard import load_state, mark_ran, save_state, should_run
from sheet import get_worksheet, open_spreadsheet, read_config_tab, read_records, sync_status_column

os.environ.setdefault("SSL_CERT_FILE", certifi.where())
ssl._create_default_https_context = lambda: ssl.create_default_context(
    cafile=certifi.where()
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
log = logging.getLogger(__name__)


def run_daily(
    settings: Settings,
    records: list[dict],
    notifier: Notifier,
    audit,
    run_state: dict,
    alert_state: dict,
    today: date,
    dry_run: bool = False,
    force: bool = False,
    run_digest: bool = True,
    run_alerts: bool = True,
) -> dict | None:
    """One full notification pass over a register snapshot.

    Returns None when the run guard skips the day, else a summary dict.
    *run_state* and *alert_state* are updated in place; the caller saves them.
    """
    if not force and not should_run(run_state, today):
        return None

    summary = {"candidates": 0, "digests_sent": 0, "digests_failed": 0, "alerts_sent": 0}

    if run_digest and settings.daily_summary_enabled:
        candidates = process_rows(records, today, settings)
        summary["candidates"] = len(candidates)
        digests = aggregate(candidates, digest_recipients(settings))
        if digests:
            result = send_digests(digests, notifier, audit, today, dry_run=dry_run)
            summary["digests_sent"] = result["sent"]
            summary["digests_failed"] = result["failed"]
        else:
            log.info("Nothing to report in the daily digest.")
    elif run_digest:
        log.info("Daily summary disabled, skipping digest")

    if run_alerts:
        alerts = find_due_alerts(records, today, settings, alert_state)
        summary["alerts_sent"] = send_threshold_alerts(
            alerts, notifier, audit, alert_state, today,
            recipients=alert_recipients(settings),
            dry_run=dry_run,
        )

    # Only a full pass counts for the run guard
    if not dry_run and run_digest and run_alerts:
        mark_ran(run_state, today)
    return summary


def _parse_day(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from None


def main() -> None:
    parser = argparse.ArgumentParser(description="Fleet Document Expiry Tracker")
    parser.add_argument("--dry-run", action="store_true", help="Print digests and alerts, send nothing")
    only = parser.add_mutually_exclusive_group()
    only.add_argument("--digest-only", action="store_true", help="Only send the daily digest")
    only.add_argument("--alerts-only", action="store_true", help="Only send threshold alerts")
    parser.add_argument("--date", type=_parse_day, default=None, help="Evaluate as if today were YYYY-MM-DD")
    parser.add_argument("--force", action="store_true", help="Run even if a pass already completed today")
    args = parser.parse_args()

    today = args.date or date.today()

    try:
        settings = load_settings()
        run_state = load_state(settings.run_state_path)
        if not args.force and not should_run(run_state, today):
            return

        creds, spreadsheet = open_spreadsheet(settings)
        overrides = read_config_tab(spreadsheet, settings.config_tab_name)
        if overrides:
            settings = load_settings(overrides)

        worksheet = get_worksheet(spreadsheet, settings)
        records = read_records(worksheet, creds, settings)
    except (ConfigError, FileNotFoundError) as e:
        log.error("Configuration error: %s", e)
        raise SystemExit(1)

    if not args.dry_run:
        try:
            sync_status_column(worksheet, records, today, settings)
        except Exception:
            log.exception("Failed to update status column")

    audit = None
    if not args.dry_run:
        audit = SheetAuditLog(
            get_or_create_log_tab(spreadsheet, settings.log_tab_name),
            max_rows=settings.log_max_rows,
        )
    alert_state = load_state(settings.alert_state_path)

    summary = run_daily(
        settings,
        records,
        Notifier(settings),
        audit,
        run_state,
        alert_state,
        today,
        dry_run=args.dry_run,
        force=args.force,
        run_digest=not args.alerts_only,
        run_alerts=not args.digest_only,
    )

    if not args.dry_run:
        try:
            audit.flush()
        except Exception:
            log.exception("Failed to write audit log")
        save_state(settings.alert_state_path, alert_state)
        save_state(settings.run_state_path, run_state)
        log.info("State saved to %s", settings.run_state_path)

    if summary is not None:
        log.info(
            "Done. %d document(s) in digest, %d digest(s) sent, %d failed, %d alert(s)%s.",
            summary["candidates"],
            summary["digests_sent"],
            summary["digests_failed"],
            summary["alerts_sent"],
            " (dry run)" if args.dry_run else "",
        )


if __name__ == "__main__":
    main()
