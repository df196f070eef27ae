"""
auth/oauth_flow.py -- Google sign-in state machine.

Two phases:

  initiate()
      Generate a state nonce (CSRF) and a PKCE code verifier, hand both back
      as short-lived httpOnly cookies, and return the provider URL that embeds
      the state and the S256 challenge derived from the verifier.

  handle_callback(query, cookies)
      1. Reject before any network call if the provider reported an error,
         code or state is missing, either cookie is missing, or the states
         differ (StateMismatch).
      2. Exchange code + verifier for tokens, fetch the profile.
      3. MissingEmail if no (verified) email came back.
      4. Resolve the account by provider subject id ONLY. Unknown subject ->
         create a Google user. An email collision with an existing account
         is AccountConflict -- accounts are never merged by email, since
         that would let whoever controls a matching Google address take over
         a password account.
      5. Mint a session.

The transient cookies are single-use: clear_transient_cookies() must be
applied after every callback, pass or fail. auth/actions.py does this.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from authlib.common.security import generate_token

from auth.cookies import OAUTH_STATE_COOKIE, OAUTH_VERIFIER_COOKIE, CookieDirective
from auth.errors import AccountConflict, ConflictError, MissingEmail, StateMismatch
from auth.models import Provider, User
from auth.oauth import GoogleOAuthProvider
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import tokens_match
from core.config import Settings

logger = logging.getLogger("authkit.auth.oauth")

_DEFAULT_NAME = "Google User"


@dataclass(frozen=True)
class OAuthStart:
    url: str
    cookies: list[CookieDirective] = field(default_factory=list)


@dataclass(frozen=True)
class OAuthOutcome:
    user_id: int
    created: bool
    cookies: list[CookieDirective] = field(default_factory=list)


class GoogleOAuthFlow:
    def __init__(
        self,
        provider: GoogleOAuthProvider,
        store: UserStore,
        sessions: SessionManager,
        settings: Settings,
    ) -> None:
        self.provider = provider
        self.store = store
        self.sessions = sessions
        self.settings = settings

    # ------------------------------------------------------------------
    # Phase 1
    # ------------------------------------------------------------------

    def initiate(self) -> OAuthStart:
        state = generate_token(32)
        code_verifier = generate_token(64)  # RFC 7636: 43-128 chars
        url = self.provider.authorization_url(state=state, code_verifier=code_verifier)
        max_age = min(self.settings.oauth_state_max_age, 3600)
        secure = bool(self.settings.secure_cookies)
        # sameSite=lax: the browser must send these on the top-level GET
        # redirect back from accounts.google.com.
        cookies = [
            CookieDirective(OAUTH_STATE_COOKIE, state, max_age=max_age, secure=secure, samesite="lax"),
            CookieDirective(OAUTH_VERIFIER_COOKIE, code_verifier, max_age=max_age, secure=secure, samesite="lax"),
        ]
        return OAuthStart(url=url, cookies=cookies)

    # ------------------------------------------------------------------
    # Phase 2
    # ------------------------------------------------------------------

    def clear_transient_cookies(self) -> list[CookieDirective]:
        secure = bool(self.settings.secure_cookies)
        return [
            CookieDirective.delete(OAUTH_STATE_COOKIE, secure=secure),
            CookieDirective.delete(OAUTH_VERIFIER_COOKIE, secure=secure),
        ]

    def check_callback(self, query: Mapping[str, str], cookies: Mapping[str, str]) -> tuple[str, str]:
        """Validate the callback request locally. Returns (code, code_verifier).

        Raises StateMismatch without touching the network.
        """
        if query.get("error"):
            logger.warning("Google returned an error on callback: %.40s", query.get("error"))
            raise StateMismatch()
        code = query.get("code")
        state = query.get("state")
        stored_state = cookies.get(OAUTH_STATE_COOKIE)
        stored_verifier = cookies.get(OAUTH_VERIFIER_COOKIE)
        if not code or not state or not stored_state or not stored_verifier:
            logger.warning("Google OAuth callback rejected: code, state or stored cookies missing")
            raise StateMismatch()
        if not tokens_match(state, stored_state):
            logger.warning("Google OAuth callback rejected: state mismatch")
            raise StateMismatch()
        return code, stored_verifier

    def handle_callback(self, query: Mapping[str, str], cookies: Mapping[str, str]) -> OAuthOutcome:
        code, code_verifier = self.check_callback(query, cookies)

        token = self.provider.exchange_code(code, code_verifier)
        profile = self.provider.get_profile(token)
        if not profile.email:
            logger.warning("Google OAuth callback rejected: no verified email in profile")
            raise MissingEmail()

        user, created = self._resolve_user(profile.subject, profile.email, profile.name)
        issued = self.sessions.create(user.id)
        logger.info("Google user signed in: %d (created=%s)", user.id, created)
        return OAuthOutcome(user_id=user.id, created=created, cookies=[issued.cookie])

    def _resolve_user(self, subject: str, email: str, name: str | None) -> tuple[User, bool]:
        """Find the user for subject, creating one on first sign-in.

        The provider subject is the only linking key. A lost insert race for
        the same subject (two callbacks in flight) resolves to the winner's
        row; any other uniqueness failure is an email collision and becomes
        AccountConflict.
        """
        user = self.store.get_by_provider_id(subject)
        if user is not None:
            if name and name != user.name:
                self.store.update_profile(user.id, name)
            return user, False

        logger.info("New Google user, creating account")
        try:
            user = self.store.create_user(
                User(
                    name=name or _DEFAULT_NAME,
                    email=email,
                    provider=Provider.google.value,
                    provider_id=subject,
                    email_verified=True,
                    hashed_password=None,
                )
            )
        except ConflictError as exc:
            winner = self.store.get_by_provider_id(subject)
            if winner is not None:
                return winner, False
            logger.warning("Google sign-in email collides with an existing account; not linking")
            raise AccountConflict() from exc
        return user, True
