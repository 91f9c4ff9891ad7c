"""Tests for the error envelope format and exception mapping.

Error responses look like:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from sessionauth.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from sessionauth.api.schemas import Envelope, ErrorBody
from sessionauth.service.errors import (
    ForbiddenError,
    InvalidCredentialsError,
    ServerError,
    SessionRevokedError,
    SettingsFullError,
)
from sessionauth.storage.errors import ConstraintViolation, StoreError


class TestErrorBody:
    def test_error_body_defaults(self):
        error = ErrorBody(code="unauthorized", message="authorization required")
        assert error.details is None

    @pytest.mark.parametrize("code", ["invalid_credentials", "settings_full", "forbidden"])
    def test_domain_codes_are_accepted(self, code):
        assert ErrorBody(code=code, message="m").code == code

    def test_unknown_code_is_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="nope")


class TestEnvelope:
    def test_request_id_is_generated(self):
        first = Envelope(status="ok")
        second = Envelope(status="ok")
        assert first.request_id != second.request_id

    def test_status_must_be_ok_or_error(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (409, "conflict"),
            (500, "server_error"),
        ],
    )
    def test_known_statuses(self, status, code):
        assert _STATUS_TO_CODE[status] == code
        assert _error_code_for_status(status) == code

    def test_unknown_status_falls_back_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_error_response_body(self):
        response = _error_response(404, "missing", {"index": "x"})
        body = json.loads(response.body)
        assert response.status_code == 404
        assert body["status"] == "error"
        assert body["error"] == {
            "code": "not_found",
            "message": "missing",
            "details": {"index": "x"},
        }


@pytest.fixture
def failing_client():
    app = FastAPI()
    register_exception_handlers(app)

    errors = {
        "credentials": InvalidCredentialsError("invalid email or password"),
        "full": SettingsFullError("settings can hold at most 5 entries"),
        "revoked": SessionRevokedError("session is no longer active"),
        "forbidden": ForbiddenError("nope"),
        "constraint": ConstraintViolation("email already exists", {"field": "email"}),
        "store": StoreError("database unavailable", {"dsn": "postgresql://u:pw@db/x"}),
        "server": ServerError("secret internals"),
        "boom": RuntimeError("kaboom"),
    }

    @app.get("/fail/{kind}")
    async def fail(kind: str):
        raise errors[kind]

    return TestClient(app, raise_server_exceptions=False)


@pytest.mark.parametrize(
    "kind,status,code",
    [
        ("credentials", 400, "invalid_credentials"),
        ("full", 400, "settings_full"),
        ("revoked", 403, "forbidden"),
        ("forbidden", 403, "forbidden"),
        ("constraint", 409, "conflict"),
    ],
)
def test_client_errors_map_to_envelopes(failing_client, kind, status, code):
    response = failing_client.get(f"/fail/{kind}")
    assert response.status_code == status
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == code


@pytest.mark.parametrize("kind", ["store", "server", "boom"])
def test_server_errors_hide_details(failing_client, kind):
    response = failing_client.get(f"/fail/{kind}")
    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "server_error"
    assert error["message"] == "internal server error"
    assert error["details"] is None
