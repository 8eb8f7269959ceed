"""Deployment REST API used by the browser client.

All routes are mounted under `/api` and require an authenticated session.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from xylo_deployer.deployer.github.client import GitHubApiError, GitHubClient
from xylo_deployer.deployer.service import DeploymentFailed, DeploymentService
from xylo_deployer.deployer.store import DeploymentRecord, DeploymentStore
from xylo_deployer.deployer.workflow_logs import collect_workflow_logs
from xylo_deployer.server.config import ServerSettings
from xylo_deployer.server.models import (
    ApiDeployment,
    ApiDeploymentLog,
    DeployRequest,
    DeployResponse,
    SetupResponse,
    WorkflowStatus,
)
from xylo_deployer.server.session import SessionUser, require_user, settings_of, store_of

logger = logging.getLogger(__name__)

router = APIRouter()


def _github_client(settings: ServerSettings, token: str) -> GitHubClient:
    return GitHubClient(token=token, base_url=settings.github_base_url)


def _deployment_service(
    settings: ServerSettings, store: DeploymentStore, github: GitHubClient
) -> DeploymentService:
    return DeploymentService(
        github=github,
        store=store,
        target=settings.deployment_target(),
        fork_wait_seconds=settings.fork_wait_seconds,
        workflow_index_wait_seconds=settings.workflow_index_wait_seconds,
        dispatch_retry_wait_seconds=settings.dispatch_retry_wait_seconds,
    )


def _owned_deployment(store: DeploymentStore, user: SessionUser, deployment_id: str) -> DeploymentRecord:
    record = store.get_deployment(deployment_id)
    # Other users' deployments are reported as missing rather than forbidden.
    if record is None or record.github_username != user.login:
        raise HTTPException(status_code=404, detail="Deployment not found")
    return record


@router.post("/setup", response_model=SetupResponse)
def setup_repository(request: Request) -> SetupResponse:
    user = require_user(request)
    settings = settings_of(request)
    github = _github_client(settings, user.token)
    try:
        service = _deployment_service(settings, store_of(request), github)
        fork = service.ensure_fork(user.login)
    except GitHubApiError as e:
        logger.warning("Repository setup failed", extra={"github_username": user.login, "error": str(e)})
        raise HTTPException(status_code=502, detail=f"Failed to set up repository: {e}") from e
    finally:
        github.close()

    message = (
        "Repository fork already exists" if fork.already_existed else "Repository forked successfully"
    )
    return SetupResponse(success=True, message=message, alreadyExists=fork.already_existed)


@router.get("/workflows/verify", response_model=WorkflowStatus)
def verify_workflows(request: Request) -> WorkflowStatus:
    user = require_user(request)
    settings = settings_of(request)
    github = _github_client(settings, user.token)
    try:
        result = _deployment_service(settings, store_of(request), github).verify_workflows(user.login)
    except GitHubApiError as e:
        logger.warning("Workflow verification failed", extra={"github_username": user.login, "error": str(e)})
        raise HTTPException(status_code=502, detail=f"Failed to verify workflows: {e}") from e
    finally:
        github.close()

    return WorkflowStatus(
        hasFork=result.has_fork,
        workflowsEnabled=result.workflows_enabled,
        needsFork=result.needs_fork,
        message=result.message,
        enableUrl=result.enable_url,
        githubUsername=result.github_username,
        isFirstDeployment=result.is_first_deployment,
    )


@router.post("/deploy", response_model=DeployResponse)
def deploy(request: Request, payload: DeployRequest) -> DeployResponse | JSONResponse:
    user = require_user(request)
    settings = settings_of(request)
    github = _github_client(settings, user.token)
    try:
        outcome = _deployment_service(settings, store_of(request), github).deploy(
            github_username=user.login,
            session_id=payload.sessionId,
            branch_name=payload.branchName,
        )
    except DeploymentFailed as e:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": e.message, "deploymentId": e.deployment_id},
        )
    finally:
        github.close()

    return DeployResponse(
        message=outcome.message,
        deploymentId=outcome.deployment_id,
        branch=outcome.branch,
        repository=outcome.repository,
        workflowUrl=outcome.workflow_url,
    )


@router.get("/deployments", response_model=list[ApiDeployment])
def list_deployments(request: Request) -> list[ApiDeployment]:
    user = require_user(request)
    records = store_of(request).list_deployments_for_user(user.login)
    return [ApiDeployment.from_record(r) for r in records]


@router.get("/deployments/{deployment_id}", response_model=ApiDeployment)
def get_deployment(request: Request, deployment_id: str) -> ApiDeployment:
    user = require_user(request)
    return ApiDeployment.from_record(_owned_deployment(store_of(request), user, deployment_id))


@router.get("/deployments/{deployment_id}/logs", response_model=list[ApiDeploymentLog])
def get_deployment_logs(request: Request, deployment_id: str) -> list[ApiDeploymentLog]:
    user = require_user(request)
    store = store_of(request)
    _owned_deployment(store, user, deployment_id)
    return [ApiDeploymentLog.from_record(log) for log in store.list_logs(deployment_id)]


@router.get("/deployments/{deployment_id}/workflow-logs")
def get_workflow_logs(request: Request, deployment_id: str) -> list[dict[str, Any]]:
    user = require_user(request)
    settings = settings_of(request)
    record = _owned_deployment(store_of(request), user, deployment_id)

    github = _github_client(settings, user.token)
    try:
        entries = collect_workflow_logs(github, record)
    except GitHubApiError as e:
        logger.warning(
            "Fetching workflow logs failed", extra={"deployment_id": deployment_id, "error": str(e)}
        )
        raise HTTPException(status_code=502, detail=f"Failed to fetch workflow logs: {e}") from e
    finally:
        github.close()
    return [entry.to_json() for entry in entries]
