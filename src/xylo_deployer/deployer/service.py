"""Deployment orchestration.

A deploy is a best-effort, non-transactional sequence of GitHub REST calls:

fork -> Actions permissions -> branch -> config.js -> .env -> workflow file -> dispatch

Every step writes a `running` log row and then exactly one terminal row (`success`,
`warning` or `failed`). Any failure marks the deployment `failed` and aborts the
remaining steps; what was already created on GitHub stays there.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from xylo_deployer.deployer.github.client import GitHubApiError, GitHubClient
from xylo_deployer.deployer.session_config import (
    DEFAULT_CONFIG_JS,
    patch_config_js,
    patch_env_file,
)
from xylo_deployer.deployer.store import DeploymentStore, StepStatus
from xylo_deployer.deployer.workflow_template import render_workflow, workflow_path

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "xylo-"
_BRANCH_ALPHABET = string.ascii_lowercase + string.digits

TERMINAL_STEP_STATUSES: frozenset[str] = frozenset({"success", "failed", "warning"})


def generate_branch_name() -> str:
    suffix = "".join(secrets.choice(_BRANCH_ALPHABET) for _ in range(6))
    return f"{BRANCH_PREFIX}{suffix}"


def actions_url(repository: str) -> str:
    return f"https://github.com/{repository}/actions"


@dataclass(frozen=True, slots=True)
class DeploymentTarget:
    """The upstream repository every user deploys from."""

    owner: str
    name: str
    main_branch: str = "main"
    workflow_file: str = "deploy.yml"

    @property
    def upstream(self) -> str:
        return f"{self.owner}/{self.name}"

    def fork_of(self, login: str) -> str:
        return f"{login}/{self.name}"


@dataclass(frozen=True, slots=True)
class ForkSetup:
    repository: str
    already_existed: bool


@dataclass(frozen=True, slots=True)
class WorkflowVerification:
    has_fork: bool
    workflows_enabled: bool
    needs_fork: bool
    message: str
    github_username: str
    is_first_deployment: bool
    enable_url: str | None = None


@dataclass(frozen=True, slots=True)
class DeploymentOutcome:
    deployment_id: str
    branch: str
    repository: str
    workflow_url: str
    message: str


@dataclass(eq=False)
class DeploymentFailed(Exception):
    """Raised when a deploy aborts. The deployment row is already marked failed."""

    deployment_id: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class BranchAlreadyExists(Exception):
    branch: str

    def __str__(self) -> str:
        return f"Branch '{self.branch}' already exists. Please choose a different name."


@dataclass(eq=False)
class ActionsDisabled(Exception):
    """Workflows cannot run on the fork until the user enables Actions in the GitHub UI."""

    repository: str
    reason: str

    def __str__(self) -> str:
        return (
            f"Failed to trigger workflow: {self.reason}. GitHub Actions appears to be disabled "
            f"on {self.repository}. Open {actions_url(self.repository)}, click "
            "'I understand my workflows, go ahead and enable them', then deploy again."
        )


class _Step:
    def __init__(self, service: DeploymentService, deployment_id: str, name: str) -> None:
        self._service = service
        self._deployment_id = deployment_id
        self.name = name
        self.status: StepStatus = "pending"

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES

    def log(self, status: StepStatus, message: str) -> None:
        self._service._log(self._deployment_id, self.name, status, message)
        self.status = status

    def progress(self, message: str) -> None:
        self.log("running", message)

    def succeed(self, message: str) -> None:
        self.log("success", message)

    def warn(self, message: str) -> None:
        self.log("warning", message)

    def fail(self, message: str) -> None:
        self.log("failed", message)


class DeploymentService:
    """Drives forks, verification and deploys for one authenticated GitHub user."""

    def __init__(
        self,
        *,
        github: GitHubClient,
        store: DeploymentStore,
        target: DeploymentTarget,
        fork_wait_seconds: float = 2.0,
        workflow_index_wait_seconds: float = 3.0,
        dispatch_retry_wait_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        branch_name_factory: Callable[[], str] = generate_branch_name,
    ) -> None:
        self._github = github
        self._store = store
        self._target = target
        self._fork_wait_seconds = fork_wait_seconds
        self._workflow_index_wait_seconds = workflow_index_wait_seconds
        self._dispatch_retry_wait_seconds = dispatch_retry_wait_seconds
        self._sleep = sleep
        self._branch_name_factory = branch_name_factory

    def _log(self, deployment_id: str, step: str, status: StepStatus, message: str) -> None:
        self._store.append_log(deployment_id, step=step, status=status, message=message)
        logger.info(
            "Deployment step",
            extra={
                "deployment_id": deployment_id,
                "step": step,
                "status": status,
                "step_message": message,
            },
        )

    @contextmanager
    def _step(self, deployment_id: str, name: str, message: str) -> Iterator[_Step]:
        step = _Step(self, deployment_id, name)
        step.progress(message)
        try:
            yield step
        except Exception as e:
            if step.status != "failed":
                step.fail(str(e) or type(e).__name__)
            raise
        if not step.finished:
            step.succeed("Done")

    def _find_fork(self, login: str) -> dict[str, object] | None:
        repo = self._github.get_repository(repository=self._target.fork_of(login))
        if repo is None or not repo.get("fork"):
            return None
        parent = repo.get("parent")
        if not isinstance(parent, dict) or parent.get("full_name") != self._target.upstream:
            return None
        return repo

    def ensure_fork(self, login: str) -> ForkSetup:
        """Return the user's fork of the upstream repository, creating it if missing."""

        repository = self._target.fork_of(login)
        if self._find_fork(login) is not None:
            return ForkSetup(repository=repository, already_existed=True)
        self._create_fork(login)
        return ForkSetup(repository=repository, already_existed=False)

    def _create_fork(self, login: str) -> None:
        self._github.create_fork(repository=self._target.upstream)
        # Fork creation is asynchronous on GitHub's side.
        self._sleep(self._fork_wait_seconds)
        logger.info(
            "Fork created",
            extra={"repo": self._target.fork_of(login), "upstream": self._target.upstream},
        )

    def verify_workflows(self, login: str) -> WorkflowVerification:
        is_first = not self._store.list_deployments_for_user(login)
        if self._find_fork(login) is None:
            return WorkflowVerification(
                has_fork=False,
                workflows_enabled=False,
                needs_fork=True,
                message="No fork found. Set up the repository before deploying.",
                github_username=login,
                is_first_deployment=is_first,
            )

        repository = self._target.fork_of(login)
        permissions = self._github.get_actions_permissions(repository=repository)
        enabled = bool(permissions and permissions.get("enabled"))
        message = (
            "GitHub Actions is enabled on your fork."
            if enabled
            else "GitHub Actions is disabled on your fork. Enable workflows to deploy."
        )
        return WorkflowVerification(
            has_fork=True,
            workflows_enabled=enabled,
            needs_fork=False,
            message=message,
            github_username=login,
            is_first_deployment=is_first,
            enable_url=actions_url(repository),
        )

    def deploy(
        self,
        *,
        github_username: str,
        session_id: str,
        branch_name: str | None = None,
    ) -> DeploymentOutcome:
        """Run the full deploy sequence.

        Raises:
            DeploymentFailed: after recording the failure on the deployment row.
        """

        deployment = self._store.create_deployment(
            session_id=session_id,
            github_username=github_username,
            repository_name=self._target.name,
            branch_name=(branch_name or "").strip() or None,
            status="running",
            message="Deployment started",
        )
        try:
            return self._run(deployment.id, session_id=session_id, branch_name=branch_name)
        except Exception as e:
            message = str(e).strip() or f"Deployment failed: {type(e).__name__}"
            logger.exception(
                "Deployment failed", extra={"deployment_id": deployment.id}
            )
            self._store.update_deployment(deployment.id, status="failed", message=message)
            self._log(deployment.id, "error", "failed", message)
            raise DeploymentFailed(deployment_id=deployment.id, message=message) from e

    def _run(self, deployment_id: str, *, session_id: str, branch_name: str | None) -> DeploymentOutcome:
        with self._step(deployment_id, "init", "Getting user information...") as step:
            login = self._github.get_authenticated_login()
            step.succeed(f"Connected as {login}")

        repository = self._target.fork_of(login)

        with self._step(deployment_id, "fork", "Checking repository fork...") as step:
            if self._find_fork(login) is not None:
                step.succeed("Using existing repository fork")
            else:
                step.progress("Creating repository fork...")
                self._create_fork(login)
                step.succeed("Repository fork created successfully")

        with self._step(deployment_id, "actions", "Checking GitHub Actions permissions...") as step:
            actions_enabled = self._ensure_actions(repository, step)

        branch = (branch_name or "").strip() or self._branch_name_factory()
        with self._step(deployment_id, "branch", f"Creating branch: {branch}...") as step:
            if self._github.get_branch_head_sha(repository=repository, branch=branch) is not None:
                step.fail(f"Branch '{branch}' already exists")
                raise BranchAlreadyExists(branch)
            base_sha = self._github.get_branch_head_sha(
                repository=repository, branch=self._target.main_branch
            )
            if base_sha is None:
                raise GitHubApiError(
                    status_code=404,
                    message=f"Base branch '{self._target.main_branch}' not found on {repository}",
                )
            self._github.create_branch(repository=repository, branch=branch, base_sha=base_sha)
            step.succeed(f"Branch '{branch}' created successfully")

        with self._step(deployment_id, "config", "Updating configuration file...") as step:
            existing = self._github.get_text_file(repository=repository, path="config.js", ref=branch)
            current = existing.content if existing is not None else DEFAULT_CONFIG_JS
            self._github.put_text_file(
                repository=repository,
                path="config.js",
                content=patch_config_js(current, session_id),
                branch=branch,
                message=f"Update config.js for {branch}",
                sha=existing.sha if existing is not None else None,
            )
            step.succeed("Configuration file updated with session ID")

        with self._step(deployment_id, "env", "Updating .env file...") as step:
            try:
                existing = self._github.get_text_file(repository=repository, path=".env", ref=branch)
                self._github.put_text_file(
                    repository=repository,
                    path=".env",
                    content=patch_env_file(existing.content if existing else "", session_id),
                    branch=branch,
                    message=f"Update .env with session ID for {branch}",
                    sha=existing.sha if existing is not None else None,
                )
            except GitHubApiError as e:
                # config.js already carries the id, so a missing .env is not fatal.
                step.warn(f"Could not update .env file: {e}")
            else:
                step.succeed(".env file updated with session ID")

        path = workflow_path(self._target.workflow_file)
        with self._step(deployment_id, "workflow", "Creating GitHub Actions workflow...") as step:
            existing = self._github.get_text_file(repository=repository, path=path, ref=branch)
            self._github.put_text_file(
                repository=repository,
                path=path,
                content=render_workflow(branch=branch, workflow_file=self._target.workflow_file),
                branch=branch,
                message=f"Create workflow for {branch}",
                sha=existing.sha if existing is not None else None,
            )
            step.succeed("GitHub Actions workflow created")

        with self._step(deployment_id, "deploy", "Triggering deployment workflow...") as step:
            # GitHub needs a moment to index a freshly committed workflow file.
            self._sleep(self._workflow_index_wait_seconds)
            status_message = self._dispatch(repository, branch, step, actions_enabled)

        workflow_url = actions_url(repository)
        self._store.update_deployment(
            deployment_id,
            status="running",
            message=status_message,
            branch_name=branch,
            workflow_url=workflow_url,
        )
        return DeploymentOutcome(
            deployment_id=deployment_id,
            branch=branch,
            repository=repository,
            workflow_url=workflow_url,
            message="Deployment successful!",
        )

    def _ensure_actions(self, repository: str, step: _Step) -> bool:
        remediation = (
            f"Enable workflows manually at {actions_url(repository)} if the deployment "
            "does not start."
        )
        try:
            permissions = self._github.get_actions_permissions(repository=repository)
            if permissions is not None and permissions.get("enabled"):
                step.succeed("GitHub Actions is enabled on the fork")
                return True
            self._github.enable_actions(repository=repository)
        except GitHubApiError as e:
            step.warn(f"Could not verify GitHub Actions permissions ({e}). {remediation}")
            return False
        step.succeed("GitHub Actions enabled on the fork")
        return True

    def _dispatch(self, repository: str, branch: str, step: _Step, actions_enabled: bool) -> str:
        workflow_file = self._target.workflow_file
        try:
            self._github.dispatch_workflow(
                repository=repository, workflow_file=workflow_file, ref=branch
            )
        except GitHubApiError as e:
            step.progress(f"Failed to trigger workflow: {e}. Retrying...")
            if not self._retry_dispatch(repository, branch):
                if not actions_enabled:
                    raise ActionsDisabled(repository=repository, reason=str(e)) from e
                raise
            step.succeed("Deployment workflow triggered successfully (after retry)")
            return "Bot deployment workflow is now running (retry successful)"

        step.succeed("Deployment workflow triggered successfully")
        return "Bot deployment workflow is now running"

    def _retry_dispatch(self, repository: str, branch: str) -> bool:
        workflow_file = self._target.workflow_file
        try:
            present = self._github.get_text_file(
                repository=repository, path=workflow_path(workflow_file), ref=branch
            )
            if present is None:
                return False
            self._sleep(self._dispatch_retry_wait_seconds)
            self._github.dispatch_workflow(
                repository=repository, workflow_file=workflow_file, ref=branch
            )
        except GitHubApiError as e:
            logger.warning(
                "Workflow dispatch retry failed", extra={"repo": repository, "error": str(e)}
            )
            return False
        return True
