"""Pydantic models for the REST server.

Field names follow the browser client's camelCase JSON.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from xylo_deployer.deployer.store import DeploymentLogRecord, DeploymentRecord
from xylo_deployer.deployer.workflow_template import is_safe_branch_name


class AuthStatus(BaseModel):
    authenticated: bool
    username: str | None = None


class DeployRequest(BaseModel):
    sessionId: str = Field(min_length=1)
    branchName: str | None = None

    @field_validator("sessionId")
    @classmethod
    def _session_id_is_single_line(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Session ID is required")
        if "\n" in value or "\r" in value:
            raise ValueError("Session ID must be a single line")
        return value

    @field_validator("branchName")
    @classmethod
    def _branch_name_is_plain(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        value = value.strip()
        if not is_safe_branch_name(value):
            raise ValueError("Branch name may only contain letters, digits and . _ - /")
        return value


class DeployResponse(BaseModel):
    success: bool = True
    message: str
    deploymentId: str
    branch: str
    repository: str
    workflowUrl: str


class SetupResponse(BaseModel):
    success: bool
    message: str
    alreadyExists: bool


class WorkflowStatus(BaseModel):
    hasFork: bool
    workflowsEnabled: bool
    needsFork: bool
    message: str
    enableUrl: str | None = None
    githubUsername: str | None = None
    isFirstDeployment: bool | None = None


class ApiDeployment(BaseModel):
    id: str
    sessionId: str
    branchName: str | None = None
    githubUsername: str
    repositoryName: str
    status: str
    message: str | None = None
    workflowUrl: str | None = None
    createdAt: str
    updatedAt: str

    @classmethod
    def from_record(cls, record: DeploymentRecord) -> ApiDeployment:
        return cls(
            id=record.id,
            sessionId=record.session_id,
            branchName=record.branch_name,
            githubUsername=record.github_username,
            repositoryName=record.repository_name,
            status=record.status,
            message=record.message,
            workflowUrl=record.workflow_url,
            createdAt=record.created_at,
            updatedAt=record.updated_at,
        )


class ApiDeploymentLog(BaseModel):
    id: str
    deploymentId: str
    step: str
    status: str
    message: str
    timestamp: str

    @classmethod
    def from_record(cls, record: DeploymentLogRecord) -> ApiDeploymentLog:
        return cls(
            id=record.id,
            deploymentId=record.deployment_id,
            step=record.step,
            status=record.status,
            message=record.message,
            timestamp=record.timestamp,
        )
