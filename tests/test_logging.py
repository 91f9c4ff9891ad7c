from sessionauth.logging import (
    _add_correlation_id,
    _redact_pii,
    correlation_id_var,
    get_correlation_id,
    set_correlation_id,
)


def test_redacts_sensitive_keys():
    event = {
        "event": "login_failed",
        "email": "someone@example.com",
        "token": "eyJhbGciOiJIUzI1NiJ9.payload.sig",
        "user_id": "u-123",
    }
    redacted = _redact_pii(None, "info", dict(event))
    assert redacted["email"] == "so***om"
    assert redacted["token"].startswith("ey***")
    assert "payload" not in redacted["token"]
    assert redacted["user_id"] == "u-123"


def test_short_values_are_left_alone():
    assert _redact_pii(None, "info", {"token": "abc"})["token"] == "abc"


def test_correlation_id_is_attached():
    token = correlation_id_var.set(None)
    try:
        assert "correlation_id" not in _add_correlation_id(None, "info", {})
        cid = set_correlation_id("req-1")
        assert cid == get_correlation_id() == "req-1"
        assert _add_correlation_id(None, "info", {})["correlation_id"] == "req-1"
        assert set_correlation_id() != "req-1"
    finally:
        correlation_id_var.reset(token)


def test_tokens_are_masked_in_any_field():
    event = {
        "event": "auth_header_rejected",
        "error": "bad header: Bearer eyJhbGciOiJIUzI1NiJ9.eyJzdWIiOiJ1In0.c2ln",
        "path": "/auth/me?t=eyJhbGciOiJIUzI1NiJ9.eyJzdWIiOiJ1In0.c2ln",
        "user_id": "u-123",
    }
    redacted = _redact_pii(None, "info", dict(event))
    assert redacted["error"] == "bad header: Bearer ***"
    assert redacted["path"] == "/auth/me?t=eyJ***"
    assert redacted["user_id"] == "u-123"
    assert redacted["event"] == "auth_header_rejected"
