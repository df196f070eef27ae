"""
web/routes.py -- Browser-facing auth routes for authkit.

These routes answer classic form posts and OAuth redirects with 302s instead
of JSON. They share app.state.auth with the API routes. Page rendering is out
of scope: the signin/signup pages themselves are served by the frontend, which
reads ?error= and ?callbackUrl= from the URL.

Route registration order matters. FastAPI resolves same-level paths in order:
  - GET /auth/google/callback is registered before GET /auth/google so a
    future /auth/google/{something} route cannot swallow "callback".

Routes:
  POST /signin                 -- form signin; 302 to callbackUrl or /dashboard
  POST /signout                -- revoke session, clear cookie, 302 /signin
  GET  /auth/google/callback   -- OAuth callback; 302 /dashboard or /signin?error=
  GET  /auth/google            -- start Google OAuth (state + PKCE cookies)
  GET  /dashboard              -- protected landing page
"""

import logging
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from auth.actions import ActionResult
from auth.cookies import SESSION_COOKIE, apply_cookies
from auth.dependencies import get_actions, try_get_current_user

logger = logging.getLogger("authkit.web")

router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist of ?error= codes the web routes emit [M3].
# Anything else is normalised to the generic code before it reaches a URL, so
# the frontend never has to echo an attacker-chosen string.
_ERROR_CODES = frozenset(
    {
        "invalid_credentials",
        "validation_error",
        "state_mismatch",
        "missing_email",
        "account_conflict",
        "provider_unavailable",
        "google_oauth_failed",
        "internal_error",
    }
)


def _safe_next(next_url: Optional[str], default: str) -> str:
    """Validate a post-signin redirect target. Only accept relative paths. [C2]

    Prevents open redirect attacks where an attacker crafts a URL like:
      /signin?callbackUrl=https://attacker.com  or  ?callbackUrl=//attacker.com

    Both would redirect off-site after signin. We only allow paths that:
    - Start with "/" (relative, server-local)
    - Do NOT start with "//" or "/\\" (browsers treat both as off-site)
    """
    if next_url and next_url.startswith("/") and not next_url.startswith(("//", "/\\")):
        return next_url
    return default


def _redirect(target: str, result: Optional[ActionResult] = None) -> RedirectResponse:
    resp = RedirectResponse(target, status_code=302)
    if result is not None:
        apply_cookies(resp, result.cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _signin_error_url(request: Request, code: Optional[str]) -> str:
    if code not in _ERROR_CODES:
        code = "internal_error"
    return f"{get_actions(request).settings.signin_path}?error={code}"


# ---------------------------------------------------------------------------
# Email / password
# ---------------------------------------------------------------------------


@router.post("/signin")
def signin_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    callbackUrl: str = Form(""),
) -> RedirectResponse:
    """Handle the signin form submission.

    The return-to path may arrive as a form field or as ?callbackUrl= on the
    form's action URL; either way it is re-validated here.
    """
    actions = get_actions(request)
    result = actions.signin({"email": email, "password": password})
    if not result.success:
        return _redirect(_signin_error_url(request, result.error_code))

    next_url = _safe_next(
        callbackUrl or request.query_params.get("callbackUrl"),
        result.redirect_to or actions.settings.after_signin_path,
    )
    return _redirect(next_url, result)


@router.post("/signout")
def signout_post(request: Request) -> RedirectResponse:
    """Revoke the session and redirect to the signin page."""
    result = get_actions(request).signout(request.cookies.get(SESSION_COOKIE))
    return _redirect(result.redirect_to or "/signin", result)


# ---------------------------------------------------------------------------
# Google OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/google/callback")
def google_callback(request: Request) -> RedirectResponse:
    """Finish the Google flow: verify state, exchange the code, open a session.

    The transient state and verifier cookies are cleared on every outcome.
    """
    result = get_actions(request).handle_google_callback(request.query_params, request.cookies)
    if not result.success:
        logger.info("Google callback rejected: %s", result.error_code)
        return _redirect(_signin_error_url(request, result.error_code), result)
    return _redirect(result.redirect_to or "/", result)


@router.get("/auth/google")
def google_start(request: Request) -> RedirectResponse:
    """Redirect the browser to Google's consent screen."""
    result = get_actions(request).sign_in_with_google()
    if not result.success:
        return _redirect(_signin_error_url(request, result.error_code))
    return _redirect(result.redirect_to, result)


# ---------------------------------------------------------------------------
# Protected pages
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request):
    """Minimal landing page for signed-in users.

    The access guard only checks that a session cookie is present; this
    handler does the real lookup and bounces revoked or expired sessions.
    """
    user = try_get_current_user(request)
    if user is None:
        resp = _redirect(get_actions(request).signin_url(request.url.path))
        resp.delete_cookie(SESSION_COOKIE)
        return resp
    resp = HTMLResponse(f"<h1>Dashboard</h1><p>Signed in as user {user.id}.</p>")
    resp.headers["Cache-Control"] = "no-store"
    return resp
