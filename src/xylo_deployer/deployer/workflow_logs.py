"""Flatten GitHub Actions run/job/step status into a chronological log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from xylo_deployer.deployer.github.client import GitHubClient
from xylo_deployer.deployer.store import DeploymentRecord

logger = logging.getLogger(__name__)

RECENT_RUNS = 10


@dataclass(frozen=True, slots=True)
class WorkflowLogEntry:
    id: str
    timestamp: str | None
    step: str
    status: str
    message: str
    run_id: int
    job_id: int
    step_number: int

    def to_json(self) -> dict[str, object]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "step": self.step,
            "status": self.status,
            "message": self.message,
            "runId": self.run_id,
            "jobId": self.job_id,
            "stepNumber": self.step_number,
        }


def repository_from_workflow_url(workflow_url: str) -> str | None:
    """Return "owner/repo" from an https://github.com/<owner>/<repo>/... URL."""

    parsed = urlparse(workflow_url)
    if parsed.netloc.lower() not in {"github.com", "www.github.com"}:
        return None
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        return None
    return f"{parts[0]}/{parts[1]}"


def _sort_key(entry: WorkflowLogEntry) -> datetime:
    if not entry.timestamp:
        return datetime.max.replace(tzinfo=UTC)
    try:
        return datetime.fromisoformat(entry.timestamp.replace("Z", "+00:00"))
    except ValueError:
        return datetime.max.replace(tzinfo=UTC)


def _step_entries(run_id: int, job: dict[str, Any]) -> list[WorkflowLogEntry]:
    job_id = job.get("id")
    steps = job.get("steps")
    if not isinstance(job_id, int) or not isinstance(steps, list):
        return []

    entries: list[WorkflowLogEntry] = []
    for step in steps:
        if not isinstance(step, dict):
            continue
        conclusion = step.get("conclusion")
        status = step.get("status")
        # Queued steps have no timing yet; only report what has started.
        if conclusion is None and status != "in_progress":
            continue
        name = str(step.get("name") or "")
        number = step.get("number")
        step_number = number if isinstance(number, int) else 0
        entries.append(
            WorkflowLogEntry(
                id=f"{job_id}-{step_number}",
                timestamp=step.get("started_at") or step.get("created_at") or job.get("started_at"),
                step=name,
                status=str(conclusion or status or "pending"),
                message=f"Step: {name}",
                run_id=run_id,
                job_id=job_id,
                step_number=step_number,
            )
        )
    return entries


def collect_workflow_logs(github: GitHubClient, deployment: DeploymentRecord) -> list[WorkflowLogEntry]:
    """Return step entries of the latest workflow run for a deployment, oldest first."""

    if not deployment.workflow_url:
        return []
    repository = repository_from_workflow_url(deployment.workflow_url)
    if repository is None:
        logger.warning(
            "Unrecognised workflow URL", extra={"deployment_id": deployment.id}
        )
        return []

    runs = github.list_workflow_runs(
        repository=repository, branch=deployment.branch_name, per_page=RECENT_RUNS
    )
    if not runs:
        return []
    run_id = runs[0].get("id")
    if not isinstance(run_id, int):
        return []

    entries: list[WorkflowLogEntry] = []
    for job in github.list_run_jobs(repository=repository, run_id=run_id):
        entries.extend(_step_entries(run_id, job))
    return sorted(entries, key=_sort_key)
