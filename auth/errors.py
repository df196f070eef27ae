"""
auth/errors.py -- Typed failures raised inside the auth core.

Every error carries a stable machine-readable `code` and a generic `message`
that is safe to show to the end user. Messages deliberately never say which
field was wrong or whether an account exists.

Actions in auth/actions.py catch these and turn them into ActionResult
failures; nothing here reaches the transport layer as an exception.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class FormValidationError(AuthError):
    """Malformed input. Actions report the per-field messages in ActionResult.errors."""

    code = "validation_error"
    message = "Request validation failed."


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class CredentialError(AuthError):
    code = "invalid_credentials"
    message = "Invalid credentials"


class InvalidCredentials(CredentialError):
    pass


class StateMismatch(CredentialError):
    code = "state_mismatch"
    message = "Authentication failed (state or code verifier mismatch)."


class MissingEmail(CredentialError):
    code = "missing_email"
    message = "Authentication failed (email missing from Google)."


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class ConflictError(AuthError):
    code = "conflict"
    message = "Account conflict."


class DuplicateEmail(ConflictError):
    code = "duplicate_email"
    message = "Email already exists"


class DuplicateProviderId(ConflictError):
    code = "duplicate_provider_id"
    message = "This provider account is already registered."


class AccountConflict(ConflictError):
    code = "account_conflict"
    message = "An account with this email already exists. Sign in with your password."


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class ExpiredOrInvalidToken(AuthError):
    code = "invalid_token"
    message = "Invalid or expired reset token."


# ---------------------------------------------------------------------------
# Dependencies (network)
# ---------------------------------------------------------------------------


class TransientDependencyError(AuthError):
    code = "dependency_unavailable"
    message = "Authentication failed."


class ProviderUnavailable(TransientDependencyError):
    code = "provider_unavailable"
    message = "Authentication failed."


class EmailDeliveryError(TransientDependencyError):
    code = "email_failed"
    message = "Email could not be sent."
