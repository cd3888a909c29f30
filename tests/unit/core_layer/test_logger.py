"""
Unit Tests for the logging processors

Redaction of credentials and request-id injection.
"""

import pytest

from inference_gateway.core.logging.logger import (
    add_request_id,
    clear_request_id,
    get_request_id,
    redact_secrets,
    set_request_id,
)


@pytest.mark.unit
class TestRedaction:
    def test_secret_fields_redacted(self):
        event = redact_secrets(None, "info", {"event": "call", "api_key": "anything"})
        assert event["api_key"] == "[REDACTED]"

    def test_provider_keys_in_text_redacted(self):
        event = redact_secrets(
            None,
            "info",
            {"event": "failed", "error": "bad key AIzaSyA-123 and sk-proj_abc for ops@example.com"},
        )
        assert "AIzaSyA-123" not in event["error"]
        assert "sk-proj_abc" not in event["error"]
        assert "[EMAIL]" in event["error"]

    def test_query_key_redacted(self):
        event = redact_secrets(None, "info", {"url": "https://x/models/m:generateContent?key=abc123"})
        assert event["url"].endswith("?key=[REDACTED]")

    def test_non_string_values_untouched(self):
        event = redact_secrets(None, "info", {"attempt": 2})
        assert event["attempt"] == 2


@pytest.mark.unit
class TestRequestId:
    def test_request_id_injected(self):
        set_request_id("req-42")
        try:
            event = add_request_id(None, "info", {"event": "x"})
            assert event["request_id"] == "req-42"
        finally:
            clear_request_id()
        assert get_request_id() is None

    def test_explicit_request_id_wins(self):
        set_request_id("req-42")
        try:
            event = add_request_id(None, "info", {"event": "x", "request_id": "other"})
            assert event["request_id"] == "other"
        finally:
            clear_request_id()
