"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup           -- create an email/password account
  POST /api/v1/auth/signin           -- password signin; sets the session cookie
  POST /api/v1/auth/signout          -- revoke session, clear cookie
  GET  /api/v1/auth/me               -- current user (requires auth)
  POST /api/v1/auth/forgot-password  -- queue a reset email; always the same reply
  POST /api/v1/auth/reset-password   -- set a new password with a reset token
  GET  /api/v1/auth/providers        -- list enabled OAuth providers (public)

Every handler delegates to AuthActions and only translates the ActionResult:
status code, error envelope, cookies, background tasks.

Security:
  [H2] signin and forgot-password are rate-limited per IP.
  [C1] AuthActions.signin equalizes timing -- never inline the lookup + verify.
  [M5] Cache-Control: no-store on every response that sets or clears a credential.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ErrorDetail,
    ErrorResponse,
    ForgotPasswordRequest,
    MessageResponse,
    OAuthProviderInfo,
    ResetPasswordRequest,
    SigninRequest,
    SigninResponse,
    SignupRequest,
    SignupResponse,
    UserResponse,
)
from auth.actions import ActionResult
from auth.cookies import SESSION_COOKIE, apply_cookies
from auth.dependencies import get_actions, get_current_user
from auth.models import User
from auth.oauth import get_enabled_providers
from core.config import get_settings

# Auth policy:
# - POST /auth/signup, /auth/signin, /auth/forgot-password, /auth/reset-password: public
# - POST /auth/signout: public -- clearing a cookie needs no prior auth
# - GET  /auth/providers: public -- signin page calls this to render OAuth buttons
# - GET  /auth/me: requires auth (get_current_user)
router = APIRouter()

_STATUS_BY_CODE: dict[str, int] = {
    "validation_error": 422,
    "duplicate_email": 409,
    "invalid_credentials": 401,
    "invalid_token": 400,
    "internal_error": 500,
}

_MESSAGE_BY_CODE: dict[str, str] = {
    "validation_error": "Request validation failed.",
    "duplicate_email": "Email already exists",
    "invalid_credentials": "Invalid credentials",
    "invalid_token": "Invalid or expired reset token.",
    "internal_error": "An unexpected error occurred.",
}


def _signin_limit() -> str:
    return get_settings().signin_rate_limit


def _forgot_password_limit() -> str:
    return get_settings().forgot_password_rate_limit


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _failure(result: ActionResult) -> JSONResponse:
    """Render a failed ActionResult in the standard error envelope."""
    code = result.error_code or "internal_error"
    resp = JSONResponse(
        status_code=_STATUS_BY_CODE.get(code, 400),
        content=ErrorResponse(
            error=ErrorDetail(
                code=code,
                message=_MESSAGE_BY_CODE.get(code, "Request failed."),
                fields=result.errors or None,
            )
        ).model_dump(),
    )
    apply_cookies(resp, result.cookies)
    return _no_store(resp)


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        email_verified=user.email_verified,
        provider=user.provider,
        created_at=user.created_at or "",
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an email/password account. Does not sign the user in."""
    result = get_actions(request).signup(body.model_dump())
    if not result.success:
        return _failure(result)
    return JSONResponse(status_code=201, content=SignupResponse(user_id=result.user_id).model_dump())


@limiter.limit(_signin_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signin", response_model=SigninResponse)
def signin(request: Request, body: SigninRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Wrong email and wrong password return the same 401 body.
    """
    result = get_actions(request).signin(body.model_dump())
    if not result.success:
        return _failure(result)
    resp = JSONResponse(
        content=SigninResponse(user=user_to_response(result.user), redirect_to=result.redirect_to).model_dump()
    )
    apply_cookies(resp, result.cookies)
    return _no_store(resp)


@router.post("/auth/signout", response_model=MessageResponse)
def signout(request: Request) -> JSONResponse:
    """Revoke the current session (if any) and clear the cookie."""
    result = get_actions(request).signout(request.cookies.get(SESSION_COOKIE))
    resp = JSONResponse(content=MessageResponse(message="Signed out.").model_dump())
    apply_cookies(resp, result.cookies)
    return _no_store(resp)


@limiter.limit(_forgot_password_limit)  # [H2]
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest, background_tasks: BackgroundTasks) -> JSONResponse:
    """Start a password reset.

    The reply is identical for known and unknown emails. The email itself is
    sent after the response, so latency does not reveal the answer either.
    """
    result = get_actions(request).forgot_password(body.model_dump())
    if not result.success:
        return _failure(result)
    for task in result.tasks:
        background_tasks.add_task(task)
    return JSONResponse(content=MessageResponse(message=result.message).model_dump())


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    """Set a new password using a reset token. The token works once."""
    result = get_actions(request).reset_password(body.model_dump())
    if not result.success:
        return _failure(result)
    resp = JSONResponse(content=MessageResponse(message=result.message).model_dump())
    apply_cookies(resp, result.cookies)
    return _no_store(resp)


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the list of configured OAuth providers.

    Public endpoint -- the signin page calls this to decide which provider
    buttons to render. Returns an empty list if no OAuth env vars are set.
    """
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(get_settings())]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the currently signed-in user."""
    return user_to_response(current_user)
