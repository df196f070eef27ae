"""
tests/test_web_routes.py -- Integration tests for the browser-facing routes.

Coverage:
  - POST /signin form: 302 to /dashboard or a safe callbackUrl, session cookie
  - POST /signin failures: 302 /signin?error=<code>, no cookie
  - open-redirect prevention on callbackUrl
  - POST /signout: 302 /signin, cookie cleared, session revoked
  - GET /auth/google -> callback round trip with state/PKCE cookies
  - callback failures map to whitelisted ?error= codes
"""

from __future__ import annotations

from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest

from auth.oauth import OAuthProfile
from web.routes import _signin_error_url

PASSWORD = "longenough1"


@pytest.fixture(scope="module")
def ann(web_client):
    client, _ = web_client
    client.post("/api/v1/auth/signup", json={"name": "Ann", "email": "web-ann@x.com", "password": PASSWORD})
    return "web-ann@x.com"


def _form_signin(client, email, password, **extra):
    return client.post("/signin", data={"email": email, "password": password, **extra})


class TestSigninForm:
    def test_success_redirects_to_dashboard(self, web_client, ann) -> None:
        client, stack = web_client
        resp = _form_signin(client, ann, PASSWORD)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"
        assert resp.headers["cache-control"] == "no-store"
        assert stack.actions.get_current_user(resp.cookies["session"]).email == ann

    def test_safe_callback_url_honoured(self, web_client, ann) -> None:
        client, _ = web_client
        resp = _form_signin(client, ann, PASSWORD, callbackUrl="/dashboard/settings")
        assert resp.headers["location"] == "/dashboard/settings"

    def test_callback_url_from_query_string(self, web_client, ann) -> None:
        client, _ = web_client
        resp = client.post(
            "/signin?callbackUrl=/dashboard/billing", data={"email": ann, "password": PASSWORD}
        )
        assert resp.headers["location"] == "/dashboard/billing"

    @pytest.mark.parametrize("target", ["https://attacker.io/", "//attacker.io", "/\\attacker.io", "javascript:alert(1)"])
    def test_offsite_callback_url_ignored(self, web_client, ann, target) -> None:
        client, _ = web_client
        resp = _form_signin(client, ann, PASSWORD, callbackUrl=target)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"

    def test_wrong_password(self, web_client, ann) -> None:
        client, _ = web_client
        resp = _form_signin(client, ann, "wrong-password")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/signin?error=invalid_credentials"
        assert "session" not in resp.cookies

    def test_empty_form(self, web_client) -> None:
        client, _ = web_client
        resp = client.post("/signin", data={})
        assert resp.headers["location"] == "/signin?error=validation_error"


def test_signout(web_client, ann) -> None:
    client, stack = web_client
    token = _form_signin(client, ann, PASSWORD).cookies["session"]
    resp = client.post("/signout", cookies={"session": token})
    assert resp.status_code == 302
    assert resp.headers["location"] == "/signin"
    assert any(h.startswith("session=") and "max-age=0" in h.lower() for h in resp.headers.get_list("set-cookie"))
    assert stack.actions.get_current_user(token) is None


class TestGoogleRoutes:
    def _start(self, client):
        resp = client.get("/auth/google")
        assert resp.status_code == 302
        state = parse_qs(urlparse(resp.headers["location"]).query)["state"][0]
        return resp, state

    def test_start_sets_transient_cookies(self, web_client) -> None:
        client, _ = web_client
        resp, state = self._start(client)
        assert resp.headers["location"].startswith("https://accounts.google.com/")
        assert resp.cookies["google_oauth_state"] == state
        assert resp.cookies["google_code_verifier"]
        for header in resp.headers.get_list("set-cookie"):
            assert "httponly" in header.lower()
            assert "samesite=lax" in header.lower()

    def test_round_trip(self, web_client) -> None:
        client, stack = web_client
        stack.google.profiles["web-alice"] = OAuthProfile(subject="web-g-1", email="alice@acme.io", name="Alice")
        _, state = self._start(client)

        # The jar carries the state and verifier cookies back, as a browser would.
        resp = client.get("/auth/google/callback", params={"code": "web-alice", "state": state})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"
        headers = resp.headers.get_list("set-cookie")
        assert any(h.startswith("google_oauth_state=") and "max-age=0" in h.lower() for h in headers)
        assert any(h.startswith("google_code_verifier=") and "max-age=0" in h.lower() for h in headers)
        assert stack.actions.get_current_user(resp.cookies["session"]).provider_id == "web-g-1"

    def test_state_mismatch(self, web_client) -> None:
        client, stack = web_client
        self._start(client)
        calls = len(stack.google.exchanges)
        resp = client.get("/auth/google/callback", params={"code": "web-alice", "state": "forged"})
        assert resp.headers["location"] == "/signin?error=state_mismatch"
        assert len(stack.google.exchanges) == calls

    def test_provider_error_param(self, web_client) -> None:
        client, _ = web_client
        _, state = self._start(client)
        resp = client.get("/auth/google/callback", params={"error": "access_denied", "state": state})
        assert resp.headers["location"] == "/signin?error=state_mismatch"

    def test_provider_outage(self, web_client) -> None:
        client, _ = web_client
        _, state = self._start(client)
        resp = client.get("/auth/google/callback", params={"code": "down", "state": state})
        assert resp.headers["location"] == "/signin?error=provider_unavailable"

    def test_account_conflict(self, web_client, ann) -> None:
        client, stack = web_client
        stack.google.profiles["web-ann"] = OAuthProfile(subject="web-g-ann", email=ann, name="Ann")
        _, state = self._start(client)
        resp = client.get("/auth/google/callback", params={"code": "web-ann", "state": state})
        assert resp.headers["location"] == "/signin?error=account_conflict"
        assert "session" not in resp.cookies


@pytest.mark.parametrize(
    "code,expected",
    [
        ("account_conflict", "/signin?error=account_conflict"),
        ("<script>", "/signin?error=internal_error"),
        (None, "/signin?error=internal_error"),
    ],
)
def test_error_codes_whitelisted(stack, code, expected) -> None:
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(auth=stack.actions)))
    assert _signin_error_url(request, code) == expected
