"""FastAPI app factory.

Route handlers are thin wrappers over `DeploymentService` and the deployment store.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from xylo_deployer import __version__
from xylo_deployer.deployer.github.client import GitHubClient
from xylo_deployer.deployer.store import (
    DeploymentStore,
    InMemoryDeploymentStore,
    JsonDeploymentStore,
)
from xylo_deployer.server.auth_router import router as auth_router
from xylo_deployer.server.config import ServerSettings
from xylo_deployer.server.deployments_router import router as deployments_router
from xylo_deployer.server.log_relay import LogRelay
from xylo_deployer.server.logs_router import router as logs_router

logger = logging.getLogger(__name__)


def _build_store(settings: ServerSettings) -> DeploymentStore:
    if settings.storage == "memory":
        return InMemoryDeploymentStore()
    return JsonDeploymentStore(settings.state_path)


def create_app(settings: ServerSettings | None = None) -> FastAPI:
    settings = settings or ServerSettings()

    if not settings.session_secret:
        logger.warning("SESSION_SECRET is not set; sessions will not survive a restart")
    if not settings.oauth_configured():
        logger.warning("GITHUB_CLIENT_ID/GITHUB_CLIENT_SECRET are not set; login is disabled")

    store = _build_store(settings)
    relay = LogRelay(
        store=store,
        client_factory=lambda token: GitHubClient(token=token, base_url=settings.github_base_url),
        poll_interval_seconds=settings.log_poll_interval_seconds,
        retry_interval_seconds=settings.log_poll_retry_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.relay.close()

    app = FastAPI(
        title="XYLO-MD Deployer",
        version=__version__,
        description="Deploys the XYLO-MD bot to a user's fork via GitHub Actions.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.effective_session_secret(),
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.session_https_only,
    )

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    app.include_router(auth_router, prefix="/api")
    app.include_router(deployments_router, prefix="/api")
    app.include_router(logs_router, prefix="/api")

    _maybe_mount_ui(app, settings)
    return app


def _maybe_mount_ui(app: FastAPI, settings: ServerSettings) -> None:
    """Serve the built client bundle from the same process.

    API routes live under `/api/*`; everything else falls back to `index.html`. Without a
    build a short notice is served at `/`.
    """

    dist = Path(settings.ui_dist_path)
    index = dist / "index.html"

    if (dist / "assets").is_dir():
        app.mount("/assets", StaticFiles(directory=dist / "assets"), name="ui-assets")

    @app.get("/", include_in_schema=False, response_model=None)
    def ui_index() -> FileResponse | PlainTextResponse:
        if index.exists():
            return FileResponse(index)
        return PlainTextResponse("Client not built. Build it into XYLO_UI_DIST and restart.\n")

    @app.get("/{full_path:path}", include_in_schema=False, response_model=None)
    def ui_spa_fallback(full_path: str) -> FileResponse:
        if full_path == "api" or full_path.startswith("api/"):
            raise HTTPException(status_code=404, detail="Not Found")

        candidate = (dist / full_path).resolve()
        if candidate.is_file() and dist.resolve() in candidate.parents:
            return FileResponse(candidate)

        if index.exists():
            return FileResponse(index)
        raise HTTPException(status_code=404, detail="Client not built")
