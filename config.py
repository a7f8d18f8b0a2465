import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger(__name__)


class ConfigError(Exception):
    """Required configuration is missing or invalid. Aborts the run before any writes."""


# ---------------------------------------------------------------------------
# Google Sheet — fleet document register
# ---------------------------------------------------------------------------

# Default column headers in the register tab
DEFAULT_ID_COL = "Registration No"
DEFAULT_LABEL_COL = "Model"
DEFAULT_DATE_COLS = "Insurance Expiry,Fitness Expiry"
DEFAULT_DOCUMENT_TYPE_NAMES = "Insurance Expiry=Insurance,Fitness Expiry=Fitness"

# Formats for dates typed as text, tried in order. Numeric dates are day-first.
DEFAULT_DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d-%b-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)

# Used instead when DATE_ORDER=mdy (US-style sheets with dates typed as text)
MONTH_FIRST_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%m/%d/%y",
    "%d-%b-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)
DATE_ORDERS = ("dmy", "mdy")

# ---------------------------------------------------------------------------
# Urgency
# ---------------------------------------------------------------------------
DEFAULT_GRACE_DAYS = 30
DEFAULT_RETENTION_DAYS = 30

ALERT_THRESHOLDS = (30, 14, 7, 1)
ALERT_POLICIES = ("window", "exact")

# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------
CHAT_PROVIDERS = ("none", "callmebot", "twilio")
CALLMEBOT_URL = "https://api.callmebot.com/whatsapp.php"
TWILIO_BASE = "https://api.twilio.com/2010-04-01"

# ---------------------------------------------------------------------------
# Audit log / state files
# ---------------------------------------------------------------------------
DEFAULT_LOG_TAB_NAME = "Notification Log"
DEFAULT_LOG_MAX_ROWS = 5000
DEFAULT_CONFIG_TAB_NAME = "Config"

# Never taken from the Config tab: where the sheet and state files live
ENV_ONLY_KEYS = (
    "GOOGLE_CREDENTIALS_PATH",
    "GOOGLE_SHEET_ID",
    "CONFIG_TAB_NAME",
    "RUN_STATE_PATH",
    "ALERT_STATE_PATH",
)

RUN_STATE_PATH = os.path.join(os.path.dirname(__file__), "run_state.json")
ALERT_STATE_PATH = os.path.join(os.path.dirname(__file__), "alert_state.json")


def _split(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _flag(value: str) -> bool:
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _int(raw: dict, key: str, default: int) -> int:
    value = raw.get(key, "")
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from None


def _type_names(value: str) -> dict[str, str]:
    """Parse 'Insurance Expiry=Insurance,Fitness Expiry=Fitness' into a mapping."""
    names = {}
    for pair in _split(value):
        column, sep, name = pair.partition("=")
        if sep and column.strip() and name.strip():
            names[column.strip()] = name.strip()
    return names


@dataclass(frozen=True)
class Settings:
    credentials_path: str
    sheet_id: str
    email_to: tuple[str, ...]

    sheet_gid: int | None = None
    sheet_tab_name: str = ""

    id_column: str = DEFAULT_ID_COL
    label_column: str = DEFAULT_LABEL_COL
    date_columns: tuple[str, ...] = tuple(_split(DEFAULT_DATE_COLS))
    document_type_names: dict[str, str] = field(
        default_factory=lambda: _type_names(DEFAULT_DOCUMENT_TYPE_NAMES)
    )
    inspection_column: str = ""
    plant_column: str = ""
    location_column: str = ""
    status_column: str = ""
    days_left_column: str = ""
    date_formats: tuple[str, ...] = DEFAULT_DATE_FORMATS

    grace_days: int = DEFAULT_GRACE_DAYS
    retention_days: int = DEFAULT_RETENTION_DAYS
    enabled_thresholds: tuple[int, ...] = ALERT_THRESHOLDS
    alert_policy: str = "window"
    daily_summary_enabled: bool = True

    email_from: str = ""
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""

    chat_provider: str = "none"
    chat_recipients: tuple[str, ...] = ()
    callmebot_api_key: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    slack_bot_token: str = ""
    slack_channel: str = ""

    log_tab_name: str = DEFAULT_LOG_TAB_NAME
    log_max_rows: int = DEFAULT_LOG_MAX_ROWS
    config_tab_name: str = DEFAULT_CONFIG_TAB_NAME
    run_state_path: str = RUN_STATE_PATH
    alert_state_path: str = ALERT_STATE_PATH

    def document_type(self, column: str) -> str:
        return self.document_type_names.get(column, column)


def load_settings(overrides: dict | None = None, environ: dict | None = None) -> Settings:
    """Build Settings from the environment, with *overrides* (e.g. the Config tab) on top.

    Raises ConfigError when a required key is missing or a value is invalid.
    """
    raw = dict(os.environ if environ is None else environ)
    for key, value in (overrides or {}).items():
        key = key.strip().upper()
        if key in ENV_ONLY_KEYS:
            log.warning("Ignoring %s override, it can only be set in the environment", key)
            continue
        if str(value).strip():
            raw[key] = str(value).strip()

    missing = [
        key for key in ("GOOGLE_CREDENTIALS_PATH", "GOOGLE_SHEET_ID", "NOTIFY_EMAIL_TO")
        if not raw.get(key, "").strip()
    ]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    email_to = tuple(_split(raw["NOTIFY_EMAIL_TO"]))
    if not email_to:
        raise ConfigError("NOTIFY_EMAIL_TO has no recipient addresses")

    date_columns = tuple(_split(raw.get("DATE_COLUMNS", DEFAULT_DATE_COLS)))
    if not date_columns:
        raise ConfigError("DATE_COLUMNS must name at least one date column")

    policy = raw.get("ALERT_POLICY", "window").strip().lower()
    if policy not in ALERT_POLICIES:
        raise ConfigError(f"ALERT_POLICY must be one of {ALERT_POLICIES}, got {policy!r}")

    provider = raw.get("CHAT_PROVIDER", "none").strip().lower() or "none"
    if provider not in CHAT_PROVIDERS:
        raise ConfigError(f"CHAT_PROVIDER must be one of {CHAT_PROVIDERS}, got {provider!r}")
    if provider == "callmebot" and not raw.get("CALLMEBOT_API_KEY"):
        raise ConfigError("CHAT_PROVIDER=callmebot requires CALLMEBOT_API_KEY")
    if provider == "twilio" and not all(
        raw.get(k) for k in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_FROM_NUMBER")
    ):
        raise ConfigError(
            "CHAT_PROVIDER=twilio requires TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER"
        )

    thresholds = tuple(
        t for t in ALERT_THRESHOLDS if _flag(raw.get(f"ALERT_{t}_DAYS", "true"))
    )

    gid = raw.get("SHEET_GID", "").strip()
    date_formats = tuple(f.strip() for f in raw.get("DATE_FORMATS", "").split("|") if f.strip())
    date_order = raw.get("DATE_ORDER", "dmy").strip().lower() or "dmy"
    if date_order not in DATE_ORDERS:
        raise ConfigError(f"DATE_ORDER must be one of {DATE_ORDERS}, got {date_order!r}")
    if not date_formats:
        date_formats = MONTH_FIRST_DATE_FORMATS if date_order == "mdy" else DEFAULT_DATE_FORMATS

    grace_days = _int(raw, "GRACE_DAYS", DEFAULT_GRACE_DAYS)
    retention_days = _int(raw, "RETENTION_DAYS", DEFAULT_RETENTION_DAYS)
    if grace_days < 0 or retention_days < 0:
        raise ConfigError("GRACE_DAYS and RETENTION_DAYS must not be negative")

    type_names = _type_names(DEFAULT_DOCUMENT_TYPE_NAMES)
    type_names.update(_type_names(raw.get("DOCUMENT_TYPE_NAMES", "")))

    return Settings(
        credentials_path=raw["GOOGLE_CREDENTIALS_PATH"].strip(),
        sheet_id=raw["GOOGLE_SHEET_ID"].strip(),
        email_to=email_to,
        sheet_gid=_int(raw, "SHEET_GID", 0) if gid else None,
        sheet_tab_name=raw.get("SHEET_TAB_NAME", "").strip(),
        id_column=raw.get("ID_COLUMN", DEFAULT_ID_COL).strip(),
        label_column=raw.get("LABEL_COLUMN", DEFAULT_LABEL_COL).strip(),
        date_columns=date_columns,
        document_type_names=type_names,
        inspection_column=raw.get("INSPECTION_COLUMN", "").strip(),
        plant_column=raw.get("PLANT_COLUMN", "").strip(),
        location_column=raw.get("LOCATION_COLUMN", "").strip(),
        status_column=raw.get("STATUS_COLUMN", "").strip(),
        days_left_column=raw.get("DAYS_LEFT_COLUMN", "").strip(),
        date_formats=date_formats,
        grace_days=grace_days,
        retention_days=retention_days,
        enabled_thresholds=thresholds,
        alert_policy=policy,
        daily_summary_enabled=_flag(raw.get("DAILY_SUMMARY_ENABLED", "true")),
        email_from=raw.get("EMAIL_FROM", "").strip(),
        smtp_host=raw.get("SMTP_HOST", "smtp.gmail.com").strip(),
        smtp_port=_int(raw, "SMTP_PORT", 587),
        smtp_user=raw.get("SMTP_USER", "").strip(),
        smtp_password=raw.get("SMTP_PASSWORD", ""),
        chat_provider=provider,
        chat_recipients=tuple(_split(raw.get("CHAT_RECIPIENTS", ""))),
        callmebot_api_key=raw.get("CALLMEBOT_API_KEY", "").strip(),
        twilio_account_sid=raw.get("TWILIO_ACCOUNT_SID", "").strip(),
        twilio_auth_token=raw.get("TWILIO_AUTH_TOKEN", "").strip(),
        twilio_from_number=raw.get("TWILIO_FROM_NUMBER", "").strip(),
        slack_bot_token=raw.get("SLACK_BOT_TOKEN", "").strip(),
        slack_channel=raw.get("SLACK_CHANNEL", "").strip(),
        log_tab_name=raw.get("LOG_TAB_NAME", DEFAULT_LOG_TAB_NAME).strip(),
        log_max_rows=_int(raw, "LOG_MAX_ROWS", DEFAULT_LOG_MAX_ROWS),
        config_tab_name=raw.get("CONFIG_TAB_NAME", DEFAULT_CONFIG_TAB_NAME).strip(),
        run_state_path=raw.get("RUN_STATE_PATH", RUN_STATE_PATH).strip(),
        alert_state_path=raw.get("ALERT_STATE_PATH", ALERT_STATE_PATH).strip(),
    )
