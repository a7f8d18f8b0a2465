"""
Pytest configuration for the expiry tracker tests

Provides settings/record factories and in-memory stand-ins for the
notification transports and the audit log sink.
"""

from datetime import date, timedelta

import pytest

from config import Settings

TODAY = date(2026, 10, 18)


class FakeNotifier:
    """Records every send; raises for recipients listed in fail_for."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, channel, recipient, subject, html_body, text_body):
        if recipient in self.fail_for:
            raise RuntimeError(f"transport rejected {recipient}")
        self.sent.append({
            "channel": channel,
            "recipient": recipient,
            "subject": subject,
            "html": html_body,
            "text": text_body,
        })


class FakeAudit:
    def __init__(self):
        self.entries = []

    def append(self, entry):
        self.entries.append(entry)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def make_settings():
    def _make(**overrides):
        base = {
            "credentials_path": "service-account.json",
            "sheet_id": "sheet-123",
            "email_to": ("ops@example.com",),
        }
        base.update(overrides)
        return Settings(**base)
    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def make_record():
    def _make(record_id="EQ-001", label="Tata 407", row=2, dates=None, formats=None, extra=None):
        values = {"Registration No": record_id, "Model": label}
        for column, offset in (dates or {}).items():
            if isinstance(offset, int):
                values[column] = (TODAY + timedelta(days=offset)).isoformat()
            else:
                values[column] = offset
        values.update(extra or {})
        return {"row": row, "values": values, "formats": formats or {}}
    return _make


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def make_notifier():
    return FakeNotifier
