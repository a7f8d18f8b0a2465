from datetime import date

import pytest

from config import (
    ALERT_THRESHOLDS,
    DEFAULT_DATE_FORMATS,
    MONTH_FIRST_DATE_FORMATS,
    ConfigError,
    load_settings,
)
from expiry import parse_date

BASE = {
    "GOOGLE_CREDENTIALS_PATH": "service-account.json",
    "GOOGLE_SHEET_ID": "sheet-123",
    "NOTIFY_EMAIL_TO": "ops@example.com, fleet@example.com",
}


def env(**extra):
    values = dict(BASE)
    values.update(extra)
    return values


def test_defaults():
    s = load_settings(environ=env())
    assert s.email_to == ("ops@example.com", "fleet@example.com")
    assert s.date_columns == ("Insurance Expiry", "Fitness Expiry")
    assert s.document_type("Insurance Expiry") == "Insurance"
    assert s.document_type("Permit Expiry") == "Permit Expiry"
    assert s.enabled_thresholds == ALERT_THRESHOLDS
    assert s.alert_policy == "window"
    assert s.grace_days == 30
    assert s.retention_days == 30
    assert s.date_formats == DEFAULT_DATE_FORMATS
    assert s.sheet_gid is None
    assert s.chat_provider == "none"
    assert s.daily_summary_enabled


@pytest.mark.parametrize("key", list(BASE))
def test_missing_required_key(key):
    values = env()
    del values[key]
    with pytest.raises(ConfigError, match=key):
        load_settings(environ=values)


def test_empty_recipient_list():
    with pytest.raises(ConfigError):
        load_settings(environ=env(NOTIFY_EMAIL_TO=" , "))


def test_threshold_toggles():
    s = load_settings(environ=env(ALERT_14_DAYS="false", ALERT_1_DAYS="0"))
    assert s.enabled_thresholds == (30, 7)


@pytest.mark.parametrize("extra", [
    {"ALERT_POLICY": "sometimes"},
    {"CHAT_PROVIDER": "pigeon"},
    {"CHAT_PROVIDER": "callmebot"},
    {"CHAT_PROVIDER": "twilio", "TWILIO_ACCOUNT_SID": "AC1"},
    {"GRACE_DAYS": "thirty"},
    {"RETENTION_DAYS": "-1"},
    {"DATE_COLUMNS": " , "},
])
def test_invalid_values(extra):
    with pytest.raises(ConfigError):
        load_settings(environ=env(**extra))


def test_overrides_take_precedence():
    s = load_settings(
        overrides={"grace_days": "7", "alert_policy": "EXACT", "sheet_gid": "12345", "log_tab_name": ""},
        environ=env(GRACE_DAYS="14"),
    )
    assert s.grace_days == 7
    assert s.alert_policy == "exact"
    assert s.sheet_gid == 12345
    # Blank override values leave the environment value alone
    assert s.log_tab_name == "Notification Log"


def test_custom_columns_and_formats():
    s = load_settings(environ=env(
        DATE_COLUMNS="Permit Expiry, PUC Expiry",
        DOCUMENT_TYPE_NAMES="Permit Expiry=Permit,PUC Expiry=Pollution",
        DATE_FORMATS="%d.%m.%Y | %Y/%m/%d",
    ))
    assert s.date_columns == ("Permit Expiry", "PUC Expiry")
    assert s.document_type("PUC Expiry") == "Pollution"
    assert s.document_type("Insurance Expiry") == "Insurance"
    assert s.date_formats == ("%d.%m.%Y", "%Y/%m/%d")


def test_chat_provider_settings():
    s = load_settings(environ=env(
        CHAT_PROVIDER="Twilio",
        TWILIO_ACCOUNT_SID="AC1",
        TWILIO_AUTH_TOKEN="tok",
        TWILIO_FROM_NUMBER="+15550001111",
        CHAT_RECIPIENTS="+911,+912",
    ))
    assert s.chat_provider == "twilio"
    assert s.chat_recipients == ("+911", "+912")


def test_date_order_selects_month_first_formats():
    us = load_settings(environ=env(DATE_ORDER="MDY"))
    assert us.date_formats == MONTH_FIRST_DATE_FORMATS
    assert parse_date("11/5/2026", us.date_formats) == date(2026, 11, 5)

    default = load_settings(environ=env())
    assert parse_date("11/5/2026", default.date_formats) == date(2026, 5, 11)


def test_explicit_date_formats_win_over_date_order():
    s = load_settings(environ=env(DATE_ORDER="mdy", DATE_FORMATS="%d.%m.%Y"))
    assert s.date_formats == ("%d.%m.%Y",)


def test_unknown_date_order():
    with pytest.raises(ConfigError):
        load_settings(environ=env(DATE_ORDER="ymd"))


def test_state_paths_cannot_be_overridden_from_the_sheet():
    s = load_settings(
        overrides={
            "run_state_path": "/tmp/elsewhere.json",
            "ALERT_STATE_PATH": "/tmp/alerts-elsewhere.json",
            "GOOGLE_SHEET_ID": "other-sheet",
            "grace_days": "10",
        },
        environ=env(RUN_STATE_PATH="/srv/fleet/run_state.json"),
    )
    assert s.run_state_path == "/srv/fleet/run_state.json"
    assert s.alert_state_path != "/tmp/alerts-elsewhere.json"
    assert s.sheet_id == "sheet-123"
    assert s.grace_days == 10
