"""Configuration for the deploy server.

The server can start without OAuth credentials (health and UI still work); endpoints that
need GitHub fail at request time instead.
"""

from __future__ import annotations

import secrets
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from xylo_deployer.deployer.service import DeploymentTarget


class ServerSettings(BaseSettings):
    """Settings for the REST API, WebSocket log stream and UI hosting.

    Notes:
        Pydantic-settings supports overriding the env file in tests via
        `ServerSettings(_env_file=path_to_env)`.
    """

    github_client_id: str = Field(default="", validation_alias="GITHUB_CLIENT_ID")
    github_client_secret: str = Field(default="", validation_alias="GITHUB_CLIENT_SECRET")
    oauth_callback_url: str = Field(
        default="",
        validation_alias="OAUTH_CALLBACK_URL",
        description=(
            "Absolute OAuth callback URL. When empty it is derived from the request's "
            "X-Forwarded-Proto and Host headers."
        ),
    )
    github_base_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_BASE_URL",
        description="GitHub API base URL (useful for GitHub Enterprise)",
    )

    repo_owner: str = Field(default="XYLO-MD", validation_alias="REPO_OWNER")
    repo_name: str = Field(default="XYLO-MD", validation_alias="REPO_NAME")
    main_branch: str = Field(default="main", validation_alias="MAIN_BRANCH")
    workflow_file: str = Field(default="deploy.yml", validation_alias="WORKFLOW_FILE")

    session_secret: str = Field(
        default="",
        validation_alias="SESSION_SECRET",
        description="Session cookie signing key. A random per-process key is used when empty.",
    )
    session_https_only: bool = Field(default=False, validation_alias="SESSION_HTTPS_ONLY")
    session_max_age_seconds: int = Field(
        default=24 * 60 * 60, validation_alias="SESSION_MAX_AGE_SECONDS", gt=0
    )

    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=5000, validation_alias="PORT", gt=0, lt=65536)
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    state_path: Path = Field(
        default=Path("deploy_state"),
        validation_alias="XYLO_STATE_PATH",
        description="Directory where deployment records are persisted",
    )
    storage: Literal["json", "memory"] = Field(default="json", validation_alias="XYLO_STORAGE")

    fork_wait_seconds: float = Field(default=2.0, validation_alias="XYLO_FORK_WAIT_SECONDS", ge=0)
    workflow_index_wait_seconds: float = Field(
        default=3.0, validation_alias="XYLO_WORKFLOW_INDEX_WAIT_SECONDS", ge=0
    )
    dispatch_retry_wait_seconds: float = Field(
        default=2.0, validation_alias="XYLO_DISPATCH_RETRY_WAIT_SECONDS", ge=0
    )
    log_poll_interval_seconds: float = Field(
        default=3.0, validation_alias="XYLO_LOG_POLL_INTERVAL_SECONDS", gt=0
    )
    log_poll_retry_seconds: float = Field(
        default=5.0, validation_alias="XYLO_LOG_POLL_RETRY_SECONDS", gt=0
    )

    # Where the client build output lives when serving the UI from the backend.
    ui_dist_path: Path = Field(default=Path("client/dist"), validation_alias="XYLO_UI_DIST")

    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="XYLO_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def oauth_configured(self) -> bool:
        return bool(self.github_client_id.strip() and self.github_client_secret.strip())

    def effective_session_secret(self) -> str:
        return self.session_secret or _PROCESS_SESSION_SECRET

    def deployment_target(self) -> DeploymentTarget:
        return DeploymentTarget(
            owner=self.repo_owner,
            name=self.repo_name,
            main_branch=self.main_branch,
            workflow_file=self.workflow_file,
        )


_PROCESS_SESSION_SECRET = secrets.token_hex(32)
