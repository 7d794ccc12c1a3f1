"""Tests for the error envelope returned on every non-2xx response:

{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "<text>", "details": <object|array|null>},
    "request_id": "<correlation id>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from tokengate.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from tokengate.api.schemas import Envelope, ErrorBody
from tokengate.service.errors import (
    ConflictError,
    ServerError,
    ServiceError,
    UnavailableError,
)
from tokengate.storage.errors import OperationCancelled, StoreUnavailable


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="unauthorized", message="invalid credentials")
        assert error.details is None

    def test_list_details(self):
        error = ErrorBody(
            code="validation_error",
            message="Multiple errors",
            details=[{"field": "email"}, {"field": "password"}],
        )
        assert len(error.details) == 2

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="no")


class TestEnvelope:
    def test_status_pattern(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")

    def test_request_id_generated(self):
        assert Envelope(status="error").request_id


class TestStatusCodes:
    @pytest.mark.parametrize(
        "status, code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (409, "conflict"),
            (500, "server_error"),
            (503, "service_unavailable"),
        ],
    )
    def test_mapping(self, status, code):
        assert _STATUS_TO_CODE[status] == code
        assert _error_code_for_status(status) == code

    def test_unknown_status_falls_back_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_error_response_shape(self):
        response = _error_response(409, "email already registered", {"field": "email"})
        body = json.loads(response.body)
        assert response.status_code == 409
        assert body["status"] == "error"
        assert body["error"] == {
            "code": "conflict",
            "message": "email already registered",
            "details": {"field": "email"},
        }
        assert body["request_id"]


@pytest.fixture
def failing_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/conflict")
    def conflict():
        raise ConflictError("email already registered", detail={"field": "email"})

    @app.get("/unavailable")
    def unavailable():
        raise UnavailableError("identity store unavailable")

    @app.get("/store-down")
    def store_down():
        raise StoreUnavailable("pool timeout talking to postgresql://db/app")

    @app.get("/cancelled")
    def cancelled():
        raise OperationCancelled("create cancelled by caller")

    @app.get("/server")
    def server():
        raise ServerError("failed to sign token")

    @app.get("/custom")
    def custom():
        raise ServiceError("nope", status_code=403, error_code="forbidden")

    @app.get("/boom")
    def boom():
        raise RuntimeError("select * from app_user failed")

    return TestClient(app, raise_server_exceptions=False)


@pytest.mark.parametrize(
    "path, status, code",
    [
        ("/conflict", 409, "conflict"),
        ("/unavailable", 503, "service_unavailable"),
        ("/store-down", 503, "service_unavailable"),
        ("/cancelled", 503, "service_unavailable"),
        ("/server", 500, "server_error"),
        ("/custom", 403, "forbidden"),
        ("/boom", 500, "server_error"),
        ("/missing", 404, "not_found"),
    ],
)
def test_handlers_produce_envelope(failing_client, path, status, code):
    response = failing_client.get(path)
    assert response.status_code == status
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == code


def test_internal_details_are_not_leaked(failing_client):
    assert "postgresql://" not in failing_client.get("/store-down").text
    assert "app_user" not in failing_client.get("/boom").text


def test_unauthorized_carries_www_authenticate():
    from tokengate import app as app_module

    response = TestClient(app_module.app).get("/me")
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
