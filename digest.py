"""
Daily expiry digest: bucket candidates per recipient and render the email body.
"""

import html
import logging
from datetime import date

from expiry import CLOSE_TO_EXPIRY, IN_GRACE, PAST_GRACE, UNDER_INSPECTION

log = logging.getLogger(__name__)

# Digest section order, most urgent first
BUCKET_ORDER = [PAST_GRACE, IN_GRACE, UNDER_INSPECTION, CLOSE_TO_EXPIRY]

BUCKET_LABELS = {
    PAST_GRACE: "Expired (past grace period)",
    IN_GRACE: "Expired (within grace period)",
    UNDER_INSPECTION: "Under inspection / renewal",
    CLOSE_TO_EXPIRY: "Close to expiry",
}

# (row background, icon) per bucket for the HTML table
BUCKET_STYLES = {
    PAST_GRACE: ("#ffcccc", "&#128308; "),
    IN_GRACE: ("#ffe0b2", "&#128992; "),
    UNDER_INSPECTION: ("#fff3cd", "&#128993; "),
    CLOSE_TO_EXPIRY: ("#ffffff", ""),
}


# ---------------------------------------------------------------------------
# Bucketing & aggregation
# ---------------------------------------------------------------------------

def group_by_bucket(candidates: list[dict]) -> dict[str, list[dict]]:
    """Partition candidates into buckets, each sorted by days left (most urgent first).

    sort() is stable, so documents with equal days left keep their input order.
    """
    buckets: dict[str, list[dict]] = {b: [] for b in BUCKET_ORDER}
    for c in candidates:
        buckets.setdefault(c["bucket"], []).append(c)
    for key in buckets:
        buckets[key].sort(key=lambda c: c["days_left"])
    return buckets


def aggregate(candidates: list[dict], recipients) -> dict[str, dict[str, list[dict]]]:
    """Fan every candidate out to every recipient.

    Recipients with nothing to report are left out, so they get no empty digest.
    """
    if not candidates:
        return {}
    digests = {}
    for recipient in recipients:
        buckets = group_by_bucket(candidates)
        if any(buckets.values()):
            digests[recipient] = buckets
    return digests


def digest_items(buckets: dict[str, list[dict]]) -> list[dict]:
    """Flatten buckets back into one list in digest order."""
    items = []
    for key in BUCKET_ORDER:
        items.extend(buckets.get(key, []))
    return items


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def format_days_left(days_left: int) -> str:
    if days_left > 0:
        return f"{days_left} day(s) left"
    if days_left == 0:
        return "expires today"
    return f"expired {-days_left} day(s) ago"


def _describe(c: dict) -> str:
    name = c["record_id"]
    if c.get("label"):
        name += f" ({c['label']})"
    where = " / ".join(p for p in (c.get("plant"), c.get("location")) if p)
    where_str = f" [{where}]" if where else ""
    return (
        f"{name}{where_str} — {c['document_type']} {c['date_display']}"
        f" — {format_days_left(c['days_left'])}"
    )


def digest_subject(buckets: dict[str, list[dict]], today: date) -> str:
    total = sum(len(v) for v in buckets.values())
    expired = len(buckets.get(PAST_GRACE, [])) + len(buckets.get(IN_GRACE, []))
    return (
        f"Fleet document expiry digest — {today.strftime('%b %d, %Y')}"
        f" ({total} document{'s' if total != 1 else ''}, {expired} expired)"
    )


def build_digest_text(buckets: dict[str, list[dict]], today: date) -> str:
    """Plain-text digest body (also used for chat messages and dry runs)."""
    total = sum(len(v) for v in buckets.values())
    lines = [
        f"FLEET DOCUMENT EXPIRY DIGEST — {today.strftime('%b %d, %Y')}",
        f"{total} document{'s' if total != 1 else ''} need attention",
    ]
    for key in BUCKET_ORDER:
        entries = buckets.get(key, [])
        if not entries:
            continue
        lines.append("")
        lines.append(f"{BUCKET_LABELS[key].upper()} ({len(entries)})")
        for c in entries:
            lines.append(f"  - {_describe(c)}")
    return "\n".join(lines)


def build_digest_html(buckets: dict[str, list[dict]], today: date) -> str:
    """Build the daily digest HTML email."""
    today_str = today.strftime("%b %d, %Y")
    total = sum(len(v) for v in buckets.values())

    html_parts = [
        "<!DOCTYPE html><html><head><meta charset='utf-8'></head><body style='font-family:Arial,sans-serif;max-width:760px;margin:auto;'>",
        f"<h2 style='background:#1a1a2e;color:#fff;padding:14px 18px;margin:0;border-radius:6px 6px 0 0;'>FLEET DOCUMENT EXPIRY DIGEST &mdash; {today_str}</h2>",
        f"<p style='color:#666;'><b>{total}</b> document{'s' if total != 1 else ''} need attention.</p>",
    ]

    for key in BUCKET_ORDER:
        entries = buckets.get(key, [])
        if not entries:
            continue
        bg, icon = BUCKET_STYLES[key]
        html_parts.append(f"<h3 style='margin:18px 0 8px;'>{BUCKET_LABELS[key].upper()} ({len(entries)})</h3>")
        html_parts.append("<table style='border-collapse:collapse;width:100%;' border='1' cellpadding='6' cellspacing='0'>")
        html_parts.append(
            "<tr style='background:#eee;'><th>ID</th><th>Model</th><th>Document</th>"
            "<th>Expiry</th><th>Days</th><th>Plant / Location</th></tr>"
        )
        for c in entries:
            where = " / ".join(p for p in (c.get("plant"), c.get("location")) if p)
            html_parts.append(
                f"<tr style='background:{bg};'>"
                f"<td>{icon}{html.escape(c['record_id'])}</td>"
                f"<td>{html.escape(c.get('label') or '')}</td>"
                f"<td>{html.escape(c['document_type'])}</td>"
                f"<td>{c['date_display']}</td>"
                f"<td>{format_days_left(c['days_left'])}</td>"
                f"<td>{html.escape(where) if where else '&mdash;'}</td></tr>"
            )
        html_parts.append("</table>")

    html_parts.append(
        "<br><p style='color:#999;font-size:12px;'>Generated by the Fleet Expiry Tracker. "
        "Red-font dates in the register are excluded; yellow dates are shown as under inspection.</p>"
    )
    html_parts.append("</body></html>")
    return "\n".join(html_parts)
