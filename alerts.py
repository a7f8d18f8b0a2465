"""
Threshold alerts: one message per document when it crosses 30/14/7/1 days left.

Policies (pick one with ALERT_POLICY):
  window  alert once when days left enters (next lower threshold, threshold],
          and once more when the document is overdue. A skipped cron day
          cannot lose an alert.
  exact   alert only on the day days left equals a threshold.

Watermarks live in the alert state file, keyed "<record id>::<document type>":
    {"last_notified": "2026-10-18", "threshold": 14, "expiry": "2026-11-01"}
"""

import html
import logging
from datetime import date

from config import Settings
from digest import format_days_left
from documents import iter_date_fields, make_candidate
from expiry import classify_bucket
from notify import SENT, Notifier, dispatch

log = logging.getLogger(__name__)

OVERDUE = 0


def watermark_key(record_id: str, document_type: str) -> str:
    return f"{record_id}::{document_type}"


def find_threshold(days_left: int, thresholds, policy: str = "window") -> int | None:
    """Return the single threshold *days_left* triggers, or None.

    Enabled thresholds are checked in descending order and the first match
    wins, so a document never triggers two thresholds in one run.
    """
    enabled = sorted(set(thresholds), reverse=True)
    if not enabled:
        return None

    if policy == "exact":
        for t in enabled:
            if days_left == t:
                return t
        return None

    if days_left <= 0:
        return OVERDUE
    for i, t in enumerate(enabled):
        lower = enabled[i + 1] if i + 1 < len(enabled) else 0
        if lower < days_left <= t:
            return t
    return None


def is_suppressed(watermark: dict | None, threshold: int, today: date, expiry: str, policy: str = "window") -> bool:
    """True when this document was already alerted today, or already alerted for this window."""
    if not watermark:
        return False
    if watermark.get("last_notified") == today.isoformat():
        return True
    if (
        policy == "window"
        and watermark.get("expiry") == expiry
        and watermark.get("threshold") == threshold
    ):
        return True
    return False


def find_due_alerts(records: list[dict], today: date, settings: Settings, state: dict) -> list[dict]:
    """Return documents that need a threshold alert today. Does not touch *state*."""
    due = []
    seen = set()
    for record, evaluation in iter_date_fields(records, today, settings):
        days_left = evaluation["days_left"]
        threshold = find_threshold(days_left, settings.enabled_thresholds, settings.alert_policy)
        if threshold is None:
            continue

        bucket = classify_bucket(
            days_left,
            hold=evaluation["hold"],
            grace_days=settings.grace_days,
            retention_days=max(settings.retention_days, *settings.enabled_thresholds),
        )
        alert = make_candidate(record, evaluation, bucket, settings)
        key = watermark_key(alert["record_id"], alert["document_type"])
        if key in seen:
            continue
        seen.add(key)

        expiry = evaluation["date"].isoformat()
        if is_suppressed(state.get(key), threshold, today, expiry, settings.alert_policy):
            log.debug("Alert for %s already sent, skipping", key)
            continue

        alert.update({"threshold": threshold, "key": key, "expiry": expiry})
        due.append(alert)

    log.info("Found %d document(s) due a threshold alert", len(due))
    return due


def build_alert_message(alert: dict) -> tuple[str, str, str]:
    """Return (subject, text, html) for one threshold alert."""
    name = alert["record_id"]
    if alert.get("label"):
        name += f" ({alert['label']})"
    when = format_days_left(alert["days_left"])
    if alert["threshold"] == OVERDUE:
        headline = f"EXPIRED: {alert['document_type']} for {name}"
    else:
        headline = f"{alert['document_type']} for {name} — {when}"

    subject = f"Expiry alert: {headline}"
    where = " / ".join(p for p in (alert.get("plant"), alert.get("location")) if p)
    lines = [
        headline,
        "",
        f"Document: {alert['document_type']}",
        f"Vehicle/Equipment: {name}",
        f"Expiry date: {alert['date_display']} ({when})",
    ]
    if where:
        lines.append(f"Plant/Location: {where}")
    if alert.get("row"):
        lines.append(f"Register row: {alert['row']}")
    text = "\n".join(lines)

    html_body = (
        "<!DOCTYPE html><html><head><meta charset='utf-8'></head>"
        "<body style='font-family:Arial,sans-serif;max-width:600px;margin:auto;'>"
        f"<h3 style='color:#b71c1c;'>{html.escape(headline)}</h3>"
        + "".join(f"<p style='margin:4px 0;'>{html.escape(line)}</p>" for line in lines[2:])
        + "</body></html>"
    )
    return subject, text, html_body


def send_threshold_alerts(
    alerts: list[dict],
    notifier: Notifier,
    audit,
    state: dict,
    today: date,
    recipients: list[tuple[str, str]],
    dry_run: bool = False,
) -> int:
    """Send each alert to every recipient; set the watermark after any success.

    Returns the number of documents alerted.
    """
    alerted = 0
    for alert in alerts:
        subject, text, html_body = build_alert_message(alert)

        if dry_run:
            print(f"--- DRY RUN: ALERT ({alert['key']}, threshold {alert['threshold']}) ---")
            print(text)
            print()
            alerted += 1
            continue

        any_sent = False
        for channel, recipient in recipients:
            result = dispatch(
                lambda: notifier.send(channel, recipient, subject, html_body, text),
                recipient,
                [alert],
                audit,
                channel=channel,
                kind=f"alert_{alert['threshold']}",
            )
            any_sent = any_sent or result["status"] == SENT

        if any_sent:
            state[alert["key"]] = {
                "last_notified": today.isoformat(),
                "threshold": alert["threshold"],
                "expiry": alert["expiry"],
            }
            alerted += 1
        else:
            log.warning("Alert for %s failed for every recipient, watermark not set", alert["key"])

    return alerted
