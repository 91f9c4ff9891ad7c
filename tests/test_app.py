from fastapi.testclient import TestClient

from sessionauth import app as app_module


def test_security_headers_and_request_id():
    client = TestClient(app_module.app)
    response = client.get("/healthz", headers={"X-Request-ID": "client-supplied"})

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "client-supplied"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "no-store" in response.headers["Cache-Control"]
    assert response.headers["API-Version"] == app_module.__version__


def test_cors_preflight_for_local_origin():
    client = TestClient(app_module.app)
    response = client.options(
        "/auth/login",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_unknown_route_uses_error_envelope():
    client = TestClient(app_module.app)
    response = client.get("/nope")
    assert response.status_code == 404
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == "not_found"


def test_wrong_method_is_rejected_with_envelope():
    client = TestClient(app_module.app)
    response = client.get("/save-settings")
    assert response.status_code == 405
    assert response.json()["error"]["code"] == "validation_error"
