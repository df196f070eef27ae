"""
auth/forms.py -- Per-action input validators.

One static Pydantic model per action. validate_form() runs a model against a
plain mapping (form fields or a JSON body, it does not care which) and
returns either the parsed form or a {field: [messages]} dict the
presentation layer can show next to its inputs.

Passwords are taken verbatim; only names, emails and tokens are stripped.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Annotated, Any, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, ValidationError, field_validator, model_validator

from auth.passwords import MAX_PASSWORD_BYTES

F = TypeVar("F", bound=BaseModel)


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


_Email = Annotated[EmailStr, BeforeValidator(_strip)]
_Name = Annotated[str, BeforeValidator(_strip), Field(min_length=1, max_length=255)]


class SignupForm(BaseModel):
    name: _Name
    email: _Email
    password: str = Field(min_length=8)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class SigninForm(BaseModel):
    email: _Email
    password: str = Field(min_length=1, max_length=1024)


class ForgotPasswordForm(BaseModel):
    email: _Email


class ResetPasswordForm(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: Annotated[str, BeforeValidator(_strip)]
    password: str = Field(min_length=8)
    confirm_password: str = Field(min_length=8, alias="confirmPassword")

    @field_validator("token")
    @classmethod
    def token_is_uuid(cls, value: str) -> str:
        try:
            uuid.UUID(value)
        except ValueError:
            raise ValueError("Invalid token format") from None
        return value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordForm":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


# Errors raised by a model-level validator have an empty loc; map them to the
# field the user has to fix.
_MODEL_ERROR_FIELD: dict[type[BaseModel], str] = {ResetPasswordForm: "confirm_password"}
_FIELD_ALIASES = {"confirmPassword": "confirm_password"}


def _message(err: dict, field: str) -> str:
    kind = err["type"]
    if kind == "missing":
        return "This field is required"
    if field == "email":
        return "Invalid email address"
    if kind == "string_too_short":
        if field == "name":
            return "Name is required"
        limit = err.get("ctx", {}).get("min_length")
        if field in ("password", "confirm_password") and limit and limit > 1:
            return f"Password must be at least {limit} characters long"
        if field == "password":
            return "Password is required"
    if kind == "value_error":
        # ctx["error"] is the ValueError raised by our own validators.
        return str(err.get("ctx", {}).get("error", err["msg"]))
    return err["msg"]


def validate_form(model: type[F], data: Mapping[str, Any]) -> tuple[F | None, dict[str, list[str]]]:
    """Parse data with model. Returns (form, {}) or (None, field_errors)."""
    try:
        return model.model_validate(dict(data)), {}
    except ValidationError as exc:
        errors: dict[str, list[str]] = {}
        for err in exc.errors():
            loc = err.get("loc") or ()
            field = str(loc[0]) if loc else _MODEL_ERROR_FIELD.get(model, "_form")
            field = _FIELD_ALIASES.get(field, field)
            errors.setdefault(field, []).append(_message(err, field))
        return None, errors
