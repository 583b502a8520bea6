from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from csvbuttler.config import Settings
from csvbuttler.data_loader import SharedState
from csvbuttler.main import INTERNAL_ERROR_MESSAGE, create_app
from csvbuttler.tokens import TokenService

from .conftest import TEST_SECRETS

CREDENTIALS = {"email": "foo@bar.com", "password": "secret"}


def _login(client: TestClient) -> str:
    response = client.post("/auth", json=CREDENTIALS)
    assert response.status_code == 200
    return response.headers["X-CSRF-TOKEN"]


# =============================================================================
# PRODUCTS
# =============================================================================

def test_get_product(client):
    response = client.get("/products/1")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {
        "id": 1,
        "title": "Widget",
        "description": None,
        "brand": "Acme",
        "price": "9.99",
    }


def test_get_product_with_description(client):
    assert client.get("/products/2").json()["description"] == "Nice"


@pytest.mark.parametrize("record_id", ["99", "0", "abc", "-1", "1.0"])
def test_unknown_product_is_404_with_empty_body(client, record_id):
    response = client.get(f"/products/{record_id}")

    assert response.status_code == 404
    assert response.content == b""


def test_products_are_cacheable(client):
    assert client.get("/products/1").headers["cache-control"] == "max-age=3600"


def test_large_responses_are_gzip_compressed(client):
    response = client.get("/openapi.json", headers={"Accept-Encoding": "gzip"})

    assert response.status_code == 200
    assert response.headers["content-encoding"] == "gzip"
    assert response.json()["info"]["title"] == "csvbuttler"


def test_small_responses_are_not_compressed(client):
    response = client.get("/products/1", headers={"Accept-Encoding": "gzip"})

    assert "content-encoding" not in response.headers
    assert response.json()["id"] == 1
    assert response.headers["cache-control"] == "max-age=3600"


def test_uncompressed_without_accept_encoding(client):
    response = client.get("/openapi.json", headers={"Accept-Encoding": "identity"})

    assert "content-encoding" not in response.headers


def test_products_do_not_require_a_session(client):
    client.cookies.clear()

    assert client.get("/products/2").status_code == 200


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================

def test_login_returns_user_cookie_and_csrf_token(client):
    response = client.post("/auth", json=CREDENTIALS)

    assert response.status_code == 200
    assert response.json() == {"email": "foo@bar.com", "company": "Foo Inc."}
    assert response.headers["X-CSRF-TOKEN"]

    cookie = response.headers["set-cookie"]
    assert cookie.startswith("jwt_token=")
    assert "HttpOnly" in cookie
    assert "Path=/" in cookie
    assert "Max-Age=86400" in cookie
    assert "Secure" not in cookie


def test_login_csrf_token_verifies(client):
    token = _login(client)

    assert client.app.state.csrf_service.verify(token)


@pytest.mark.parametrize(
    "body",
    [
        {"email": "", "password": "secret"},
        {"email": "   ", "password": "secret"},
        {"email": "foo@bar.com", "password": ""},
    ],
)
def test_login_with_empty_credentials_is_401(client, body):
    response = client.post("/auth", json=body)

    assert response.status_code == 401
    assert isinstance(response.json(), str)
    assert "set-cookie" not in response.headers


def test_login_signing_failure_is_500(client):
    client.app.state.token_service = TokenService(lambda: None)

    response = client.post("/auth", json=CREDENTIALS)

    assert response.status_code == 500
    assert response.json() == INTERNAL_ERROR_MESSAGE


def test_logout_clears_cookie(client):
    _login(client)

    response = client.delete("/auth")

    assert response.status_code == 200
    assert response.content == b""
    cookie = response.headers["set-cookie"]
    assert cookie.startswith("jwt_token=")
    assert "Max-Age=0" in cookie


def test_logout_without_session_still_succeeds(client):
    assert client.delete("/auth").status_code == 200


# =============================================================================
# PROTECTED REQUESTS
# =============================================================================

def test_session_and_csrf_authorize(client):
    csrf = _login(client)

    response = client.get("/auth", headers={"X-CSRF-TOKEN": csrf})

    assert response.status_code == 200
    assert response.json() == {"email": "foo@bar.com", "company": "Foo Inc."}


def test_valid_session_without_csrf_header_is_401(client):
    _login(client)

    response = client.get("/auth")

    assert response.status_code == 401
    assert response.json() == "Unauthorized"


def test_malformed_csrf_header_is_401(client):
    _login(client)

    assert client.get("/auth", headers={"X-CSRF-TOKEN": "not-hex!"}).status_code == 401


def test_forged_csrf_token_is_401(client):
    from csvbuttler.csrf import CsrfTokenService

    _login(client)
    forged = CsrfTokenService("attacker-key-0123456789abcdef0123456789").generate()

    assert client.get("/auth", headers={"X-CSRF-TOKEN": forged}).status_code == 401


def test_csrf_without_session_is_401(client):
    csrf = client.app.state.csrf_service.generate()

    assert client.get("/auth", headers={"X-CSRF-TOKEN": csrf}).status_code == 401


def test_tampered_identity_cookie_is_401(client):
    csrf = client.app.state.csrf_service.generate()
    client.cookies.set("jwt_token", "forged.value.signature")

    assert client.get("/auth", headers={"X-CSRF-TOKEN": csrf}).status_code == 401


def test_expired_session_is_401(client):
    csrf = client.app.state.csrf_service.generate()
    issued_at = datetime.now(timezone.utc) - timedelta(hours=25)
    expired = TokenService(lambda: TEST_SECRETS["jwt"], clock=lambda: issued_at).issue(
        "foo@bar.com", "Foo Inc."
    )
    signed = client.app.state.identity_policy.sign(expired)
    client.cookies.set("jwt_token", signed)

    response = client.get("/auth", headers={"X-CSRF-TOKEN": csrf})

    assert response.status_code == 401
    assert response.json() == "Unauthorized"


def test_logout_revokes_access(client):
    csrf = _login(client)
    client.delete("/auth")

    assert client.get("/auth", headers={"X-CSRF-TOKEN": csrf}).status_code == 401


# =============================================================================
# HEALTH / ROOT / CORS
# =============================================================================

def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["records_loaded"] == 2


def test_root_banner(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.text.startswith("csvbuttler ")


def test_cors_enabled_for_configured_origin(csv_file):
    settings = Settings(
        server={"alloworigin": "http://shop.example"},
        csv={"uri": str(csv_file), "delimiter": ";"},
        secrets=TEST_SECRETS,
    )

    with TestClient(create_app(SharedState.build(settings))) as c:
        response = c.get("/products/1", headers={"Origin": "http://shop.example"})

    assert response.headers["access-control-allow-origin"] == "http://shop.example"


def test_cors_disabled_without_origin(client):
    response = client.get("/products/1", headers={"Origin": "http://shop.example"})

    assert "access-control-allow-origin" not in response.headers


def test_secure_cookie_when_https(csv_file):
    settings = Settings(
        server={"https": True, "domain": "shop.example"},
        csv={"uri": str(csv_file), "delimiter": ";"},
        secrets=TEST_SECRETS,
    )

    with TestClient(create_app(SharedState.build(settings))) as c:
        cookie = c.post("/auth", json=CREDENTIALS).headers["set-cookie"]

    assert "Secure" in cookie
    assert "Domain=shop.example" in cookie
