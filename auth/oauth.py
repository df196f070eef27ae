"""
auth/oauth.py -- Google OAuth2 / OIDC client built on Authlib.

GoogleOAuthProvider wraps authlib's requests-based OAuth2Session. It has three
jobs: build the authorization URL (with state and an S256 PKCE challenge),
exchange an authorization code plus code verifier for tokens, and fetch the
userinfo profile. It holds no per-user state; a fresh OAuth2Session is
created per call.

State and code verifier are NOT kept in a server session here (the authlib
Starlette integration would need SessionMiddleware for that). The flow
controller in auth/oauth_flow.py keeps them in short-lived httpOnly cookies.

Security notes:
  [H1] The email claim is only accepted when email_verified is True. A
       missing or false flag is treated as no email at all; such an address
       could belong to someone else.

  Google endpoints are static and listed below, so no discovery document
  fetch is needed at startup.

Every network call carries a timeout (Settings.http_timeout_seconds).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests
from authlib.integrations.base_client import OAuthError
from authlib.integrations.requests_client import OAuth2Session

from auth.errors import ProviderUnavailable
from core.config import Settings

logger = logging.getLogger("authkit.auth.oauth")

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_SCOPE = "openid email profile"


@dataclass(frozen=True)
class OAuthProfile:
    """The parts of a provider profile the auth core cares about."""

    subject: str  # stable external id ("sub")
    email: str | None
    name: str | None


class GoogleOAuthProvider:
    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, timeout: float = 10.0) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleOAuthProvider:
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
            timeout=settings.http_timeout_seconds,
        )

    def _client(self, token: dict | None = None) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=GOOGLE_SCOPE,
            redirect_uri=self.redirect_uri,
            code_challenge_method="S256",
            token=token,
        )

    def authorization_url(self, state: str, code_verifier: str) -> str:
        """Return the Google consent URL carrying state and the S256 code challenge."""
        with self._client() as client:
            url, _ = client.create_authorization_url(
                GOOGLE_AUTHORIZE_URL,
                state=state,
                code_verifier=code_verifier,
                access_type="online",
                prompt="select_account",
            )
        return url

    def exchange_code(self, code: str, code_verifier: str) -> dict:
        """Trade an authorization code (plus PKCE verifier) for a token dict.

        Raises ProviderUnavailable on any HTTP, network or OAuth error.
        """
        try:
            with self._client() as client:
                return dict(
                    client.fetch_token(
                        GOOGLE_TOKEN_URL,
                        grant_type="authorization_code",
                        code=code,
                        code_verifier=code_verifier,
                        timeout=self.timeout,
                    )
                )
        except (OAuthError, requests.RequestException, ValueError) as exc:
            logger.warning("Google token exchange failed: %s", exc.__class__.__name__)
            raise ProviderUnavailable() from exc

    def get_profile(self, token: dict) -> OAuthProfile:
        """Fetch the OIDC userinfo for token and normalize it [H1].

        Raises ProviderUnavailable if the call fails or the body is not a JSON
        object with a subject.
        """
        try:
            with self._client(token=token) as client:
                resp = client.get(GOOGLE_USERINFO_URL, timeout=self.timeout)
                resp.raise_for_status()
                info = resp.json()
        except (OAuthError, requests.RequestException, ValueError) as exc:
            logger.warning("Google userinfo fetch failed: %s", exc.__class__.__name__)
            raise ProviderUnavailable() from exc

        if not isinstance(info, dict):
            logger.warning("Google userinfo response is not a JSON object")
            raise ProviderUnavailable()

        subject = info.get("sub")
        if not subject:
            logger.warning("Google userinfo response has no sub claim")
            raise ProviderUnavailable()

        email = info.get("email") or None
        if email and not info.get("email_verified", False):
            logger.warning("Google reported an unverified email; ignoring it")
            email = None
        return OAuthProfile(subject=str(subject), email=email, name=info.get("name") or None)


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every configured OAuth provider.

    Used by GET /api/v1/auth/providers so the signin page knows which
    buttons to render.
    """
    providers: list[dict] = []
    if settings.google_enabled:
        providers.append({"name": "google", "label": "Google"})
    return providers
