"""
Outbound notifications: SMTP email, chat/SMS providers and Slack.

Every send is a single attempt. A failed send is logged and recorded in the
audit log, and the run moves on to the next recipient.
"""

import logging
import smtplib
import ssl
from datetime import date, datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import certifi
import httpx
from slack_sdk import WebClient as SlackClient
from slack_sdk.errors import SlackApiError

import config
from config import Settings
from digest import build_digest_html, build_digest_text, digest_items, digest_subject

log = logging.getLogger(__name__)

SENT = "SENT"
FAILED = "FAILED"

EMAIL = "email"
CHAT = "chat"
SLACK = "slack"


# ---------------------------------------------------------------------------
# Chat / SMS providers
# ---------------------------------------------------------------------------

class CallMeBotProvider:
    """GET-based WhatsApp gateway: phone + apikey + text as query params."""

    name = "callmebot"

    def __init__(self, api_key: str, http=None):
        self.api_key = api_key
        self.http = http or httpx

    def send(self, phone: str, text: str) -> None:
        resp = self.http.get(
            config.CALLMEBOT_URL,
            params={"phone": phone, "apikey": self.api_key, "text": text},
            timeout=30,
        )
        resp.raise_for_status()


class TwilioProvider:
    """POST-based SMS API authenticated with the account SID and auth token."""

    name = "twilio"

    def __init__(self, account_sid: str, auth_token: str, from_number: str, http=None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.http = http or httpx

    def send(self, phone: str, text: str) -> None:
        resp = self.http.post(
            f"{config.TWILIO_BASE}/Accounts/{self.account_sid}/Messages.json",
            auth=(self.account_sid, self.auth_token),
            data={"From": self.from_number, "To": phone, "Body": text},
            timeout=30,
        )
        resp.raise_for_status()


def get_chat_provider(settings: Settings):
    if settings.chat_provider == "callmebot":
        return CallMeBotProvider(settings.callmebot_api_key)
    if settings.chat_provider == "twilio":
        return TwilioProvider(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number,
        )
    return None


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class Notifier:
    """Message transports for one run. Every method raises on failure."""

    def __init__(self, settings: Settings, chat_provider=None, slack: SlackClient | None = None):
        self.settings = settings
        self.chat = chat_provider if chat_provider is not None else get_chat_provider(settings)
        if slack is None and settings.slack_bot_token:
            slack = SlackClient(token=settings.slack_bot_token)
        self.slack = slack

    def send_email(self, to: str, subject: str, html_body: str, text_body: str = "") -> None:
        s = self.settings
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = s.email_from
        msg["To"] = to
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context(cafile=certifi.where())
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as server:
            server.starttls(context=context)
            if s.smtp_user:
                server.login(s.smtp_user, s.smtp_password)
            server.sendmail(s.email_from, [to], msg.as_string())
        log.info("Email '%s' sent to %s", subject, to)

    def send_chat(self, phone: str, text: str) -> None:
        if self.chat is None:
            raise RuntimeError("No chat provider configured")
        self.chat.send(phone, text)
        log.info("Chat message sent to %s via %s", phone, self.chat.name)

    def post_slack(self, channel: str, text: str) -> None:
        if self.slack is None:
            raise RuntimeError("No Slack token configured")
        try:
            self.slack.chat_postMessage(channel=channel, text=text)
        except SlackApiError as e:
            log.error("Slack API error: %s", e.response["error"])
            raise
        log.info("Posted to Slack %s", channel)

    def send(self, channel: str, recipient: str, subject: str, html_body: str, text_body: str) -> None:
        if channel == EMAIL:
            self.send_email(recipient, subject, html_body, text_body)
        elif channel == CHAT:
            self.send_chat(recipient, text_body)
        elif channel == SLACK:
            self.post_slack(recipient, text_body)
        else:
            raise ValueError(f"Unknown channel {channel!r}")


def digest_recipients(settings: Settings) -> list[tuple[str, str]]:
    """(channel, address) pairs that receive the daily digest."""
    recipients = [(EMAIL, addr) for addr in settings.email_to]
    if settings.slack_bot_token and settings.slack_channel:
        recipients.append((SLACK, settings.slack_channel))
    return recipients


def alert_recipients(settings: Settings) -> list[tuple[str, str]]:
    """(channel, address) pairs that receive threshold alerts."""
    recipients = [(EMAIL, addr) for addr in settings.email_to]
    if settings.chat_provider != "none":
        recipients.extend((CHAT, phone) for phone in settings.chat_recipients)
    if settings.slack_bot_token and settings.slack_channel:
        recipients.append((SLACK, settings.slack_channel))
    return recipients


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def dispatch(
    send,
    recipient: str,
    items: list[dict],
    audit,
    channel: str = EMAIL,
    kind: str = "digest",
    now: datetime | None = None,
) -> dict:
    """Call *send* once and audit the outcome for every document the message covers.

    Transport errors are caught here so one failed recipient never stops the
    rest of the run.
    """
    try:
        send()
        result = {"status": SENT, "error": None}
    except Exception as e:
        log.exception("Failed to send %s to %s via %s", kind, recipient, channel)
        result = {"status": FAILED, "error": str(e) or e.__class__.__name__}

    timestamp = (now or datetime.now(timezone.utc)).isoformat(timespec="seconds")
    for item in items:
        audit.append({
            "timestamp": timestamp,
            "record_id": item["record_id"],
            "document_type": item["document_type"],
            "days_left": item["days_left"],
            "recipient": recipient,
            "channel": channel,
            "kind": kind,
            "status": result["status"],
            "error": result["error"] or "",
        })
    return result


def send_digests(
    digests: dict,
    notifier: Notifier,
    audit,
    today: date,
    dry_run: bool = False,
) -> dict:
    """Send one digest per recipient. Returns {"sent": n, "failed": n}."""
    summary = {"sent": 0, "failed": 0}
    for (channel, recipient), buckets in digests.items():
        subject = digest_subject(buckets, today)
        text = build_digest_text(buckets, today)
        html_body = build_digest_html(buckets, today) if channel == EMAIL else ""

        if dry_run:
            print(f"--- DRY RUN: DIGEST to {recipient} ({channel}) ---")
            print(f"Subject: {subject}")
            print(text)
            print()
            continue

        result = dispatch(
            lambda: notifier.send(channel, recipient, subject, html_body, text),
            recipient,
            digest_items(buckets),
            audit,
            channel=channel,
            kind="digest",
        )
        summary["sent" if result["status"] == SENT else "failed"] += 1

    log.info("Digest: %d sent, %d failed%s", summary["sent"], summary["failed"],
             " (dry run)" if dry_run else "")
    return summary
