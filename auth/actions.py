"""
auth/actions.py -- The action interface the presentation layer calls.

Each action takes already-decoded input (a mapping of form/JSON fields, a
cookie value, the callback query string) and returns an ActionResult:
success flag, user id / message / field errors, an optional redirect
target, and the cookie directives to apply. Actions never touch a response
object and never raise to the caller -- every auth failure is a result.

A store outage (SQLAlchemyError) is caught here, logged with a traceback and
turned into a generic _form error. The Google callback also turns any other
fault into that error, after scheduling the transient cookies for deletion.

Slow side effects whose outcome must stay invisible to the caller (the
password reset email) are returned as ActionResult.tasks instead of run
inline, so the response for a known email takes as long as for an unknown one.
The HTTP layer hands them to FastAPI BackgroundTasks; direct callers use
run_tasks().
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from auth.cookies import OAUTH_STATE_COOKIE, OAUTH_VERIFIER_COOKIE, CookieDirective
from auth.email import EmailSender, render_reset_email
from auth.errors import (
    AuthError,
    ConflictError,
    DuplicateEmail,
    ExpiredOrInvalidToken,
    FormValidationError,
    InvalidCredentials,
)
from auth.forms import ForgotPasswordForm, ResetPasswordForm, SigninForm, SignupForm, validate_form
from auth.guard import signin_redirect
from auth.models import Provider, User
from auth.oauth_flow import GoogleOAuthFlow
from auth.passwords import PasswordHasher
from auth.reset import ResetTokenService
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("authkit.auth")

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, we sent a password reset link."
RESET_SUCCESS_MESSAGE = "Your password has been successfully reset."
UNEXPECTED_ERROR = "An unexpected error occurred."


@dataclass
class ActionResult:
    success: bool
    user_id: int | None = None
    user: User | None = None
    message: str | None = None
    errors: dict[str, list[str]] = field(default_factory=dict)
    error_code: str | None = None
    redirect_to: str | None = None
    cookies: list[CookieDirective] = field(default_factory=list)
    tasks: list[Callable[[], None]] = field(default_factory=list)

    def run_tasks(self) -> None:
        for task in self.tasks:
            task()
        self.tasks.clear()


def _fail(code: str, errors: dict[str, list[str]], **kwargs: Any) -> ActionResult:
    return ActionResult(success=False, error_code=code, errors=errors, **kwargs)


def _unexpected(**kwargs: Any) -> ActionResult:
    return _fail("internal_error", {"_form": [UNEXPECTED_ERROR]}, **kwargs)


class AuthActions:
    """Facade over the auth services. One instance per process, built in the lifespan."""

    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        sessions: SessionManager,
        resets: ResetTokenService,
        email_sender: EmailSender,
        settings: Settings,
        google: GoogleOAuthFlow | None = None,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.sessions = sessions
        self.resets = resets
        self.email_sender = email_sender
        self.settings = settings
        self.google = google

    # ------------------------------------------------------------------
    # Email / password
    # ------------------------------------------------------------------

    def signup(self, data: Mapping[str, Any]) -> ActionResult:
        form, errors = validate_form(SignupForm, data)
        if form is None:
            logger.info("Signup validation failed: %s", sorted(errors))
            return _fail(FormValidationError.code, errors)

        try:
            if self.store.get_by_email(form.email) is not None:
                return _fail(DuplicateEmail.code, {"email": [DuplicateEmail.message]})
            user = self.store.create_user(
                User(
                    name=form.name,
                    email=form.email,
                    hashed_password=self.hasher.hash(form.password),
                    email_verified=False,
                    provider=Provider.email.value,
                )
            )
        except ConflictError:
            # Lost a race with a concurrent signup for the same email.
            return _fail(DuplicateEmail.code, {"email": [DuplicateEmail.message]})
        except SQLAlchemyError:
            logger.exception("Error during signup")
            return _unexpected()

        logger.info("User created successfully: %d", user.id)
        return ActionResult(success=True, user_id=user.id, user=user)

    def signin(self, data: Mapping[str, Any]) -> ActionResult:
        """Verify email + password and open a session.

        Unknown email, provider-only account and wrong password all produce the
        same error and cost one bcrypt verification each [C1].
        """
        form, errors = validate_form(SigninForm, data)
        if form is None:
            return _fail(FormValidationError.code, errors)

        denied = _fail(InvalidCredentials.code, {"_form": [InvalidCredentials.message]})
        try:
            user = self.store.get_by_email(form.email)
            if user is None or user.hashed_password is None:
                self.hasher.dummy_verify(form.password)
                logger.info("Signin failed: unknown email or no password set")
                return denied
            if not self.hasher.verify(form.password, user.hashed_password):
                logger.info("Signin failed: password mismatch for user %d", user.id)
                return denied
            issued = self.sessions.create(user.id)
        except SQLAlchemyError:
            logger.exception("Error during signin")
            return _unexpected()

        logger.info("User signed in successfully: %d", user.id)
        return ActionResult(
            success=True,
            user_id=user.id,
            user=user,
            cookies=[issued.cookie],
            redirect_to=self.settings.after_signin_path,
        )

    def signout(self, session_token: str | None) -> ActionResult:
        """Revoke the session and clear its cookie. Always succeeds from the caller's view."""
        try:
            self.sessions.revoke(session_token)
        except SQLAlchemyError:
            logger.exception("Error revoking session during signout")
        return ActionResult(
            success=True,
            cookies=[self.sessions.clear_cookie()],
            redirect_to=self.settings.signin_path,
        )

    def get_current_user(self, session_token: str | None) -> User | None:
        return self.sessions.validate(session_token)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, data: Mapping[str, Any]) -> ActionResult:
        """Issue a reset token and queue the email.

        The reply is the same whether or not the account exists and whether
        or not the email goes out.
        """
        form, errors = validate_form(ForgotPasswordForm, data)
        if form is None:
            return _fail(FormValidationError.code, errors)

        result = ActionResult(success=True, message=FORGOT_PASSWORD_MESSAGE)
        try:
            user = self.store.get_by_email(form.email)
            if user is None:
                logger.warning("Forgot password attempt for non-existent email")
                return result
            issued = self.resets.issue(user.id)
        except SQLAlchemyError:
            logger.exception("Error during forgot password process")
            return _unexpected()

        link = self.resets.build_reset_link(issued.token)
        result.tasks.append(lambda: self._send_reset_email(user.email, link))
        return result

    def _send_reset_email(self, to: str, link: str) -> None:
        text, html = render_reset_email(link, self.settings.reset_token_expire_seconds // 60)
        try:
            sent = self.email_sender.send(self.settings.email_from, to, "Password Reset Request", text, html)
        except Exception:
            logger.exception("Email sender raised while sending password reset email")
            return
        if sent:
            logger.info("Password reset email sent")
        else:
            logger.error("Password reset email was not sent")

    def reset_password(self, data: Mapping[str, Any]) -> ActionResult:
        form, errors = validate_form(ResetPasswordForm, data)
        if form is None:
            return _fail(FormValidationError.code, errors)

        try:
            user_id = self.resets.redeem(form.token, self.hasher.hash(form.password))
        except SQLAlchemyError:
            logger.exception("Error during reset password process")
            return _unexpected()

        if user_id is None:
            return _fail(ExpiredOrInvalidToken.code, {"_form": [ExpiredOrInvalidToken.message]})
        return ActionResult(
            success=True,
            user_id=user_id,
            message=RESET_SUCCESS_MESSAGE,
            # Every session of the user was revoked along with the reset.
            cookies=[self.sessions.clear_cookie()],
        )

    # ------------------------------------------------------------------
    # Google
    # ------------------------------------------------------------------

    def _google_failure_url(self, code: str = "google_oauth_failed") -> str:
        return f"{self.settings.signin_path}?error={code}"

    def sign_in_with_google(self) -> ActionResult:
        if self.google is None:
            logger.error("Google sign-in requested but GOOGLE_CLIENT_ID/SECRET are not configured")
            return _fail("google_oauth_failed", {}, redirect_to=self._google_failure_url())
        try:
            start = self.google.initiate()
        except Exception:
            logger.exception("Error initiating Google OAuth")
            return _fail("google_oauth_failed", {}, redirect_to=self._google_failure_url())
        return ActionResult(success=True, redirect_to=start.url, cookies=list(start.cookies))

    def handle_google_callback(self, query: Mapping[str, str], cookies: Mapping[str, str]) -> ActionResult:
        if self.google is None:
            secure = bool(self.settings.secure_cookies)
            stale = [
                CookieDirective.delete(OAUTH_STATE_COOKIE, secure=secure),
                CookieDirective.delete(OAUTH_VERIFIER_COOKIE, secure=secure),
            ]
            return _fail("google_oauth_failed", {}, cookies=stale, redirect_to=self._google_failure_url())

        clear = self.google.clear_transient_cookies()
        try:
            outcome = self.google.handle_callback(query, cookies)
        except AuthError as exc:
            return _fail(
                exc.code,
                {"_form": [exc.message]},
                cookies=clear,
                redirect_to=self._google_failure_url(exc.code),
            )
        except SQLAlchemyError:
            logger.exception("Error handling Google OAuth callback")
            return _unexpected(cookies=clear, redirect_to=self._google_failure_url())
        except Exception:
            logger.exception("Unexpected error in Google OAuth callback")
            return _unexpected(cookies=clear, redirect_to=self._google_failure_url())

        return ActionResult(
            success=True,
            user_id=outcome.user_id,
            cookies=clear + outcome.cookies,
            redirect_to=self.settings.after_signin_path,
        )

    def signin_url(self, return_to: str) -> str:
        return signin_redirect(self.settings.signin_path, return_to)
