"""Tests for schedule and webhook trigger handling."""

import hashlib
import hmac
from datetime import datetime, timezone

import pytest

from core.constants import TriggerType
from core.exceptions import ValidationError
from triggers.base import TriggerEvent
from triggers.handlers.manual import ManualTriggerHandler
from triggers.handlers.schedule import (
    ScheduleTriggerHandler,
    frequency_to_cron,
    is_due,
    next_run,
    resolve_cron,
)
from triggers.handlers.webhook import WebhookTriggerHandler, compute_signature

UTC = timezone.utc


@pytest.mark.unit
class TestFrequencyToCron:
    @pytest.mark.parametrize(
        "frequency,time,day,expected",
        [
            ("hourly", "00:15", None, "15 * * * *"),
            ("daily", "08:30", None, "30 8 * * *"),
            ("weekly", "09:00", "monday", "0 9 * * 1"),
            ("weekly", "09:00", None, "0 9 * * 0"),
            ("monthly", None, 15, "0 0 15 * *"),
        ],
    )
    def test_conversion(self, frequency, time, day, expected):
        assert frequency_to_cron(frequency, time, day) == expected

    @pytest.mark.parametrize(
        "frequency,time,day",
        [("yearly", None, None), ("daily", "25:00", None), ("weekly", "09:00", 9), ("monthly", None, 32)],
    )
    def test_rejects_bad_input(self, frequency, time, day):
        with pytest.raises(ValidationError):
            frequency_to_cron(frequency, time, day)


@pytest.mark.unit
class TestResolveCron:
    def test_raw_cron_wins(self):
        assert resolve_cron({"cron": " */5 * * * * ", "frequency": "daily"}) == "*/5 * * * *"

    def test_cron_expression_key(self):
        assert resolve_cron({"cronExpression": "0 6 * * 1-5"}) == "0 6 * * 1-5"

    def test_frequency_fallback(self):
        assert resolve_cron({"frequency": "daily", "time": "07:45"}) == "45 7 * * *"

    @pytest.mark.parametrize("config", [{}, {"cron": "* * *"}, {"cron": "61 * * * *"}])
    def test_invalid(self, config):
        with pytest.raises(ValidationError):
            resolve_cron(config)

    def test_handler_rejects_unknown_timezone(self):
        ok, error = ScheduleTriggerHandler().validate_config({"cron": "0 9 * * *", "timezone": "Mars/Base"})
        assert not ok
        assert "Unknown timezone" in error


@pytest.mark.unit
class TestNextRun:
    def test_next_day(self):
        after = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
        assert next_run("0 9 * * *", after) == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)

    def test_strictly_after(self):
        after = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
        assert next_run("0 9 * * *", after) == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)

    def test_timezone(self):
        after = datetime(2024, 1, 1, 0, 0, tzinfo=UTC)
        # 09:00 in Sofia is 07:00 UTC in winter
        assert next_run("0 9 * * *", after, "Europe/Sofia") == datetime(2024, 1, 1, 7, 0, tzinfo=UTC)

    def test_naive_datetimes_are_utc(self):
        assert next_run("0 9 * * *", datetime(2024, 1, 1, 10, 0)) == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)


@pytest.mark.unit
class TestIsDue:
    def test_due_after_last_fire(self):
        last = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
        assert is_due("0 9 * * *", last, datetime(2024, 1, 2, 9, 0, 30, tzinfo=UTC))
        assert not is_due("0 9 * * *", last, datetime(2024, 1, 2, 8, 59, tzinfo=UTC))

    def test_never_fired_uses_last_minute(self):
        assert is_due("*/5 * * * *", None, datetime(2024, 1, 1, 10, 5, 10, tzinfo=UTC))
        assert not is_due("*/5 * * * *", None, datetime(2024, 1, 1, 10, 7, tzinfo=UTC))


@pytest.mark.unit
class TestWebhookHandler:
    def test_signature_format(self):
        body = b'{"leadId": 5}'
        expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        assert compute_signature("s3cret", body) == f"sha256={expected}"

    def test_verify_signature(self):
        handler = WebhookTriggerHandler()
        config = {"identifier": "new-lead", "secret": "s3cret"}
        body = b"{}"

        assert handler.verify_signature(config, body, compute_signature("s3cret", body))
        assert not handler.verify_signature(config, body, compute_signature("other", body))
        assert not handler.verify_signature(config, body, None)
        assert handler.verify_signature({"identifier": "open"}, body, None)

    def test_identifier_validation(self):
        handler = WebhookTriggerHandler()
        assert handler.validate_config({"identifier": "new_lead-1"}) == (True, None)
        ok, _ = handler.validate_config({"identifier": "bad id!"})
        assert not ok

    def test_context_exposes_payload(self):
        event = TriggerEvent(
            workflow_id="wf", trigger_type=TriggerType.WEBHOOK,
            payload={"leadId": 5, "trigger": "spoofed"},
        )
        context = WebhookTriggerHandler().build_context(event)

        assert context["leadId"] == 5
        assert context["webhookData"] == {"leadId": 5, "trigger": "spoofed"}
        assert context["trigger"]["type"] == "webhook"


@pytest.mark.unit
def test_manual_context_exposes_payload():
    event = TriggerEvent(workflow_id="wf", trigger_type=TriggerType.MANUAL, payload={"note": "hi"})
    context = ManualTriggerHandler().build_context(event)

    assert context["note"] == "hi"
    assert context["trigger"]["type"] == "manual"
