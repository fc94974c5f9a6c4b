"""
Tests for the structlog processors and log_context.
"""

import structlog

from quota_bridge.observability.logging import (
    REDACTED,
    add_app_context,
    log_context,
    redact_secrets,
)


class TestRedactSecrets:
    def test_masks_raw_keys_and_tokens(self):
        event = redact_secrets(
            None,
            "info",
            {"event": "x", "key": "sk-live", "raw_keys": ["sk-a"], "push_auth_token": "t"},
        )

        assert event["key"] == REDACTED
        assert event["raw_keys"] == REDACTED
        assert event["push_auth_token"] == REDACTED

    def test_counts_and_other_fields_pass_through(self):
        event = redact_secrets(None, "info", {"event": "x", "keys": 3, "key_fp": "sk-abc..."})

        assert event["keys"] == 3
        assert event["key_fp"] == "sk-abc..."


def test_app_context_is_added():
    event = add_app_context(None, "info", {"event": "x"})
    assert "service" in event
    assert "version" in event


def test_log_context_binds_and_unbinds():
    with log_context(request_id="req-1"):
        assert structlog.contextvars.get_contextvars()["request_id"] == "req-1"
    assert "request_id" not in structlog.contextvars.get_contextvars()
