"""GitHub OAuth authorization-code helpers."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import requests

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
SCOPES = "repo,workflow"


@dataclass(eq=False)
class OAuthError(Exception):
    message: str

    def __str__(self) -> str:
        return self.message


def new_state() -> str:
    return secrets.token_urlsafe(16)


def authorize_url(*, client_id: str, redirect_uri: str, state: str) -> str:
    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": SCOPES,
        }
    )
    return f"{AUTHORIZE_URL}?{query}"


def exchange_code_for_token(
    *,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    session: requests.Session | None = None,
) -> str:
    """Exchange an authorization code for an access token.

    Raises:
        OAuthError: if GitHub rejects the code or returns no token.
    """

    http = session or requests
    try:
        resp = http.post(
            ACCESS_TOKEN_URL,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            headers={"Accept": "application/json"},
            timeout=30,
        )
        resp.raise_for_status()
        data: Any = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("OAuth token exchange failed", extra={"error": str(e)})
        raise OAuthError("Failed to obtain access token") from e

    if not isinstance(data, dict):
        raise OAuthError("Failed to obtain access token")
    if data.get("error"):
        raise OAuthError(str(data.get("error_description") or data["error"]))
    token = data.get("access_token")
    if not isinstance(token, str) or not token.strip():
        raise OAuthError("Failed to obtain access token")
    return token
