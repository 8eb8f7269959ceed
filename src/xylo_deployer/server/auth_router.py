"""GitHub OAuth login flow.

All routes are mounted under `/api`.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse

from xylo_deployer.deployer.github.client import GitHubApiError, GitHubClient
from xylo_deployer.server.config import ServerSettings
from xylo_deployer.server.models import AuthStatus
from xylo_deployer.server.oauth import (
    OAuthError,
    authorize_url,
    exchange_code_for_token,
    new_state,
)
from xylo_deployer.server.session import (
    OAUTH_STATE_KEY,
    SESSION_TOKEN_KEY,
    current_user,
    settings_of,
    store_of,
)

logger = logging.getLogger(__name__)

router = APIRouter()

CALLBACK_PATH = "/api/auth/callback"


def _callback_url(request: Request, settings: ServerSettings) -> str:
    if settings.oauth_callback_url.strip():
        return settings.oauth_callback_url.strip()
    # Behind a proxy the public scheme/host only show up in forwarded headers.
    proto = request.headers.get("x-forwarded-proto", "").split(",")[0].strip()
    host = request.headers.get("host", "").strip()
    if not proto:
        proto = request.url.scheme
    if not host:
        host = request.url.netloc
    return f"{proto}://{host}{CALLBACK_PATH}"


def _resolve_login(settings: ServerSettings, token: str) -> str:
    github = GitHubClient(token=token, base_url=settings.github_base_url)
    try:
        return github.get_authenticated_login()
    finally:
        github.close()


def _error_redirect(message: str) -> RedirectResponse:
    return RedirectResponse(url=f"/?error={quote(message)}", status_code=302)


@router.get("/auth")
def start_login(request: Request) -> RedirectResponse:
    settings = settings_of(request)
    if not settings.oauth_configured():
        raise HTTPException(status_code=503, detail="GitHub OAuth is not configured")

    state = new_state()
    request.session[OAUTH_STATE_KEY] = state
    url = authorize_url(
        client_id=settings.github_client_id,
        redirect_uri=_callback_url(request, settings),
        state=state,
    )
    return RedirectResponse(url=url, status_code=302)


@router.get("/auth/callback")
def oauth_callback(
    request: Request,
    code: str = "",
    state: str = "",
    error: str = "",
) -> RedirectResponse:
    settings = settings_of(request)
    expected_state = request.session.pop(OAUTH_STATE_KEY, None)

    if error:
        return _error_redirect(error)
    if not state or state != expected_state:
        logger.warning("OAuth callback with mismatched state")
        return _error_redirect("invalid_state")
    if not code:
        return _error_redirect("missing_code")

    try:
        token = exchange_code_for_token(
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            code=code,
            redirect_uri=_callback_url(request, settings),
        )
        login = _resolve_login(settings, token)
    except (OAuthError, GitHubApiError) as e:
        logger.warning("OAuth login failed", extra={"error": str(e)})
        return _error_redirect(str(e) or "authentication_failed")

    store = store_of(request)
    previous = request.session.pop(SESSION_TOKEN_KEY, None)
    if isinstance(previous, str) and previous:
        store.delete_session(previous)
    record = store.create_session(
        github_login=login, github_token=token, ttl_seconds=settings.session_max_age_seconds
    )
    request.session[SESSION_TOKEN_KEY] = record.session_token
    store.upsert_user(login)
    logger.info("User authenticated", extra={"github_username": login})
    return RedirectResponse(url="/deployments?authenticated=true", status_code=302)


@router.get("/auth/status", response_model=AuthStatus, response_model_exclude_none=True)
def auth_status(request: Request) -> AuthStatus:
    user = current_user(request)
    if user is None:
        return AuthStatus(authenticated=False)
    return AuthStatus(authenticated=True, username=user.login)


@router.post("/auth/logout")
def logout(request: Request) -> dict[str, bool]:
    session_token = request.session.get(SESSION_TOKEN_KEY)
    if isinstance(session_token, str) and session_token:
        store_of(request).delete_session(session_token)
    request.session.clear()
    return {"success": True}
