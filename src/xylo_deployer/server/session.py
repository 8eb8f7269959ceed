"""Request-scoped helpers shared by the routers.

The signed session cookie only carries an opaque session token. The GitHub token and
login it maps to live in the deployment store, so logging out revokes every copy of
the cookie.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException
from starlette.requests import HTTPConnection

from xylo_deployer.deployer.store import DeploymentStore
from xylo_deployer.server.config import ServerSettings

OAUTH_STATE_KEY = "oauth_state"
SESSION_TOKEN_KEY = "session_token"


@dataclass(frozen=True, slots=True)
class SessionUser:
    login: str
    token: str


def settings_of(conn: HTTPConnection) -> ServerSettings:
    settings = getattr(conn.app.state, "settings", None)
    if not isinstance(settings, ServerSettings):
        raise HTTPException(status_code=500, detail="Server settings not configured")
    return settings


def store_of(conn: HTTPConnection) -> DeploymentStore:
    store = getattr(conn.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Deployment store not configured")
    return store


def current_user(conn: HTTPConnection) -> SessionUser | None:
    session_token = conn.session.get(SESSION_TOKEN_KEY)
    if not isinstance(session_token, str) or not session_token:
        return None
    record = store_of(conn).get_session(session_token)
    if record is None:
        return None
    return SessionUser(login=record.github_login, token=record.github_token)


def require_user(conn: HTTPConnection) -> SessionUser:
    user = current_user(conn)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
