from datetime import timedelta

import pytest

from alerts import (
    OVERDUE,
    build_alert_message,
    find_due_alerts,
    find_threshold,
    is_suppressed,
    send_threshold_alerts,
    watermark_key,
)
from notify import EMAIL, FAILED, SENT

INSURANCE = "Insurance Expiry"
RECIPIENTS = [(EMAIL, "ops@example.com")]


@pytest.mark.parametrize("days_left,expected", [
    (30, 30),
    (14, 14),
    (7, 7),
    (1, 1),
    (13, None),
    (31, None),
    (0, None),
    (-4, None),
])
def test_exact_policy(days_left, expected):
    assert find_threshold(days_left, (30, 14, 7, 1), "exact") == expected


def test_exact_policy_respects_disabled_thresholds():
    assert find_threshold(14, (30, 7, 1), "exact") is None


@pytest.mark.parametrize("days_left,expected", [
    (31, None),
    (30, 30),
    (20, 30),
    (15, 30),
    (14, 14),
    (8, 14),
    (7, 7),
    (2, 7),
    (1, 1),
    (0, OVERDUE),
    (-12, OVERDUE),
])
def test_window_policy(days_left, expected):
    assert find_threshold(days_left, (30, 14, 7, 1), "window") == expected


def test_window_policy_merges_disabled_windows():
    # 14 disabled: 30 covers (7, 30]
    assert find_threshold(10, (30, 7, 1), "window") == 30


def test_no_enabled_thresholds_never_alerts():
    assert find_threshold(-3, (), "window") is None
    assert find_threshold(14, (), "exact") is None


def test_is_suppressed(today):
    expiry = "2026-11-01"
    assert not is_suppressed(None, 14, today, expiry)
    assert is_suppressed({"last_notified": today.isoformat()}, 14, today, expiry)
    yesterday = (today - timedelta(days=1)).isoformat()
    same_window = {"last_notified": yesterday, "threshold": 14, "expiry": expiry}
    assert is_suppressed(same_window, 14, today, expiry, "window")
    assert not is_suppressed(same_window, 7, today, expiry, "window")
    assert not is_suppressed(same_window, 14, today, "2027-11-01", "window")
    assert not is_suppressed(same_window, 14, today, expiry, "exact")


def test_exact_threshold_fires_once_per_day(make_record, make_settings, today, audit, notifier):
    settings = make_settings(alert_policy="exact")
    records = [make_record("EQ-014", dates={INSURANCE: 14})]
    state = {}

    alerts = find_due_alerts(records, today, settings, state)
    assert [a["threshold"] for a in alerts] == [14]
    assert send_threshold_alerts(alerts, notifier, audit, state, today, RECIPIENTS) == 1
    assert len(notifier.sent) == 1

    key = watermark_key("EQ-014", "Insurance")
    assert state[key]["last_notified"] == today.isoformat()

    again = find_due_alerts(records, today, settings, state)
    assert again == []
    assert send_threshold_alerts(again, notifier, audit, state, today, RECIPIENTS) == 0
    assert len(notifier.sent) == 1


def test_window_alerts_once_per_window(make_record, settings, today, audit, notifier):
    state = {}
    expiry_offset = 13

    day1 = today
    records = [make_record("EQ-020", dates={INSURANCE: expiry_offset})]
    alerts = find_due_alerts(records, day1, settings, state)
    send_threshold_alerts(alerts, notifier, audit, state, day1, RECIPIENTS)
    assert [a["threshold"] for a in alerts] == [14]

    # Next days inside the same (7, 14] window: nothing new
    for n in (1, 2, 5):
        assert find_due_alerts(records, day1 + timedelta(days=n), settings, state) == []

    # Crossing into (1, 7]
    day7 = day1 + timedelta(days=6)
    alerts = find_due_alerts(records, day7, settings, state)
    assert [a["threshold"] for a in alerts] == [7]


def test_skipped_day_still_alerts_under_window_policy(make_record, settings, today):
    # 14-day mark fell on a day cron did not run; today is 12 days out
    records = [make_record("EQ-021", dates={INSURANCE: 12})]
    alerts = find_due_alerts(records, today, settings, {})
    assert [a["threshold"] for a in alerts] == [14]


def test_renewed_document_alerts_again(make_record, settings, today):
    key = watermark_key("EQ-022", "Insurance")
    state = {key: {"last_notified": "2025-10-01", "threshold": 30, "expiry": "2025-10-30"}}
    records = [make_record("EQ-022", dates={INSURANCE: 25})]
    alerts = find_due_alerts(records, today, settings, state)
    assert [a["threshold"] for a in alerts] == [30]


def test_overdue_alert(make_record, settings, today):
    records = [make_record("EQ-023", dates={INSURANCE: -3})]
    alerts = find_due_alerts(records, today, settings, {})
    assert [a["threshold"] for a in alerts] == [OVERDUE]
    subject, text, _ = build_alert_message(alerts[0])
    assert subject.startswith("Expiry alert: EXPIRED: Insurance for EQ-023")
    assert "expired 3 day(s) ago" in text


def test_excluded_documents_never_alert(make_record, settings, today):
    records = [make_record(
        "EQ-024", dates={INSURANCE: 7}, formats={INSURANCE: {"font": "#ff0000"}},
    )]
    assert find_due_alerts(records, today, settings, {}) == []


def test_find_due_alerts_does_not_touch_state(make_record, settings, today):
    state = {}
    find_due_alerts([make_record(dates={INSURANCE: 7})], today, settings, state)
    assert state == {}


def test_watermark_set_when_any_recipient_succeeds(make_record, settings, today, audit, make_notifier):
    recipients = [(EMAIL, "bad@example.com"), (EMAIL, "good@example.com")]
    notifier = make_notifier(fail_for={"bad@example.com"})
    state = {}
    alerts = find_due_alerts([make_record("EQ-030", dates={INSURANCE: 7})], today, settings, state)

    assert send_threshold_alerts(alerts, notifier, audit, state, today, recipients) == 1
    assert watermark_key("EQ-030", "Insurance") in state
    assert [(e["recipient"], e["status"]) for e in audit.entries] == [
        ("bad@example.com", FAILED),
        ("good@example.com", SENT),
    ]
    assert audit.entries[0]["kind"] == "alert_7"
    assert audit.entries[0]["days_left"] == 7


def test_no_watermark_when_every_send_fails(make_record, settings, today, audit, make_notifier):
    notifier = make_notifier(fail_for={"ops@example.com"})
    state = {}
    alerts = find_due_alerts([make_record("EQ-031", dates={INSURANCE: 1})], today, settings, state)

    assert send_threshold_alerts(alerts, notifier, audit, state, today, RECIPIENTS) == 0
    assert state == {}
    assert [e["status"] for e in audit.entries] == [FAILED]


def test_dry_run_sends_nothing(make_record, settings, today, audit, notifier, capsys):
    state = {}
    alerts = find_due_alerts([make_record("EQ-032", dates={INSURANCE: 30})], today, settings, state)

    assert send_threshold_alerts(alerts, notifier, audit, state, today, RECIPIENTS, dry_run=True) == 1
    assert notifier.sent == []
    assert audit.entries == []
    assert state == {}
    assert "DRY RUN" in capsys.readouterr().out
