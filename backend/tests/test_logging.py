import json
import logging
import sys

from app.infrastructure.logging.context import reset_request_id, set_request_id, set_user_id
from app.infrastructure.logging.json_formatter import JsonLogFormatter


def make_record(message: str, *args, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord("app.test", logging.WARNING, __file__, 1, message, args, exc_info)


def test_event_and_context_are_included():
    request_token = set_request_id("req-1")
    set_user_id("user-1")
    try:
        line = JsonLogFormatter().format(make_record("token_revoked jti=%s reason=%s", "abc123", "logout"))
    finally:
        reset_request_id(request_token)
        set_user_id(None)

    payload = json.loads(line)
    assert payload["event"] == "token_revoked"
    assert payload["message"] == "token_revoked jti=abc123 reason=logout"
    assert payload["level"] == "WARNING"
    assert payload["request_id"] == "req-1"
    assert payload["user_id"] == "user-1"


def test_exception_type_is_reported():
    try:
        raise TimeoutError("ledger lookup")
    except TimeoutError:
        record = make_record("revocation_lookup_timeout_failed_closed", exc_info=sys.exc_info())

    payload = json.loads(JsonLogFormatter().format(record))
    assert payload["exc_type"] == "TimeoutError"
    assert "ledger lookup" in payload["exc_info"]
