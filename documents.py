"""
Row processing: register rows -> per-document evaluations and notification candidates.

A record is a dict built by sheet.read_records():
    {"row": 5, "values": {header: value}, "formats": {header: {"font": hex, "background": hex}}}
"""

import logging
from datetime import date

from colors import is_exclusion_color, is_hold_color
from config import Settings
from expiry import classify_bucket, evaluate, parse_date

log = logging.getLogger(__name__)

DISPLAY_DATE_FORMAT = "%d %b %Y"


def _value(record: dict, column: str) -> str:
    if not column:
        return ""
    value = record.get("values", {}).get(column, "")
    return str(value).strip() if value is not None else ""


def record_id(record: dict, settings: Settings) -> str:
    return _value(record, settings.id_column)


def iter_date_fields(records: list[dict], today: date, settings: Settings):
    """Yield (record, evaluation) for every reportable date field.

    Skips rows without an identifier, red-font (excluded) date cells and
    empty or unparsable dates. Hold is a yellow date cell OR a valid date in
    the inspection column.
    """
    for record in records:
        if not record_id(record, settings):
            continue

        inspection_hold = bool(
            settings.inspection_column
            and parse_date(_value(record, settings.inspection_column), settings.date_formats)
        )

        for column in settings.date_columns:
            fmt = record.get("formats", {}).get(column, {})
            if is_exclusion_color(fmt.get("font", "")):
                continue

            hold = inspection_hold or is_hold_color(fmt.get("background", ""))
            evaluation = evaluate(
                record.get("values", {}).get(column),
                today,
                hold=hold,
                document_type=settings.document_type(column),
                formats=settings.date_formats,
            )
            if evaluation is not None:
                yield record, evaluation


def make_candidate(record: dict, evaluation: dict, bucket: str, settings: Settings) -> dict:
    return {
        "record_id": record_id(record, settings),
        "label": _value(record, settings.label_column),
        "document_type": evaluation["document_type"],
        "date_display": evaluation["date"].strftime(DISPLAY_DATE_FORMAT),
        "days_left": evaluation["days_left"],
        "bucket": bucket,
        "plant": _value(record, settings.plant_column),
        "location": _value(record, settings.location_column),
        "row": record.get("row"),
    }


def process_rows(records: list[dict], today: date, settings: Settings) -> list[dict]:
    """Return notification candidates in row order, then configured column order."""
    candidates = []
    for record, evaluation in iter_date_fields(records, today, settings):
        bucket = classify_bucket(
            evaluation["days_left"],
            hold=evaluation["hold"],
            grace_days=settings.grace_days,
            retention_days=settings.retention_days,
        )
        if bucket:
            candidates.append(make_candidate(record, evaluation, bucket, settings))

    log.info("Found %d document(s) needing attention across %d row(s)", len(candidates), len(records))
    return candidates


def soonest_days_left(record: dict, today: date, settings: Settings) -> int | None:
    """Smallest days-left across a record's non-excluded date fields (whole-row status)."""
    days = [ev["days_left"] for _, ev in iter_date_fields([record], today, settings)]
    return min(days) if days else None
