"""
Expiry date evaluation.

Two urgency models:
  - bucket model (canonical, drives reminders and alerts), one bucket per date field
  - whole-row status model, used only for the register's Status column
"""

import logging
from datetime import date, datetime, timedelta

import config

log = logging.getLogger(__name__)

# Buckets (bucket model)
PAST_GRACE = "PAST_GRACE"
IN_GRACE = "IN_GRACE"
UNDER_INSPECTION = "UNDER_INSPECTION"
CLOSE_TO_EXPIRY = "CLOSE_TO_EXPIRY"

# Statuses (whole-row model)
STATUS_OK = "OK"
STATUS_WARNING = "WARNING"
STATUS_URGENT = "URGENT"
STATUS_CRITICAL = "CRITICAL"
STATUS_EXPIRED = "EXPIRED"

# Google Sheets serial dates count days from this epoch
SHEETS_EPOCH = date(1899, 12, 30)


def parse_date(value, formats=config.DEFAULT_DATE_FORMATS) -> date | None:
    """Parse a cell value into a calendar date, dropping any time of day.

    Accepts date/datetime objects, Sheets serial numbers and strings such as
    '2026-10-20', '20/10/2026', '20-Oct-2026' or 'October 20, 2026'.
    Returns None for empty or unparsable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            return SHEETS_EPOCH + timedelta(days=int(value))
        except (OverflowError, ValueError):
            return None

    date_str = str(value).strip()
    if not date_str:
        return None

    candidates = [date_str]
    # '2026-10-20T08:00:00' / '20/10/2026 14:30:00'
    if "T" in date_str and date_str[:4].isdigit():
        candidates.append(date_str.split("T", 1)[0])
    if " " in date_str and ":" in date_str:
        candidates.append(date_str.rsplit(" ", 1)[0])

    for text in candidates:
        for fmt in formats:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    return None


def days_between(target, today) -> int:
    """Whole days from *today* to *target*, negative when *target* is in the past.

    Both sides are truncated to midnight so time of day never produces a
    fractional day.
    """
    if isinstance(target, datetime):
        target = target.date()
    if isinstance(today, datetime):
        today = today.date()
    return (target - today).days


def classify_bucket(
    days_left: int,
    hold: bool = False,
    grace_days: int = config.DEFAULT_GRACE_DAYS,
    retention_days: int = config.DEFAULT_RETENTION_DAYS,
) -> str | None:
    """Bucket for a date field, or None when it is too far out to report.

    Hold is checked first and overrides the date-based buckets.
    """
    if days_left > retention_days:
        return None
    if hold:
        return UNDER_INSPECTION
    if days_left < -grace_days:
        return PAST_GRACE
    if days_left <= 0:
        return IN_GRACE
    return CLOSE_TO_EXPIRY


def classify_status(days_left: int | None) -> str:
    """Whole-row status for a record's soonest expiry."""
    if days_left is None:
        return ""
    if days_left <= 0:
        return STATUS_EXPIRED
    if days_left <= 7:
        return STATUS_CRITICAL
    if days_left <= 14:
        return STATUS_URGENT
    if days_left <= 30:
        return STATUS_WARNING
    return STATUS_OK


def evaluate(
    raw_date,
    today: date,
    hold: bool = False,
    excluded: bool = False,
    document_type: str = "",
    formats=config.DEFAULT_DATE_FORMATS,
) -> dict | None:
    """Evaluate one date field. Returns None when the field yields no item.

    Excluded fields yield nothing regardless of their date value.
    """
    if excluded:
        return None
    parsed = parse_date(raw_date, formats)
    if parsed is None:
        if raw_date not in (None, ""):
            log.debug("Unparsable %s date %r, skipping", document_type or "document", raw_date)
        return None
    return {
        "document_type": document_type,
        "raw_date": raw_date,
        "date": parsed,
        "days_left": days_between(parsed, today),
        "excluded": False,
        "hold": bool(hold),
    }
