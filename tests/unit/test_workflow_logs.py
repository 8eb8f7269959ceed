"""Unit tests for flattening GitHub Actions runs into log entries."""

from __future__ import annotations

from unittest.mock import Mock

from xylo_deployer.deployer.github.client import GitHubClient
from xylo_deployer.deployer.store import InMemoryDeploymentStore
from xylo_deployer.deployer.workflow_logs import (
    collect_workflow_logs,
    repository_from_workflow_url,
)


def _deployment(store: InMemoryDeploymentStore, *, workflow_url: str | None):
    record = store.create_deployment(
        session_id="abc123", github_username="alice", repository_name="XYLO-MD", status="running"
    )
    return store.update_deployment(record.id, branch_name="xylo-abc123", workflow_url=workflow_url)


def test_repository_from_workflow_url() -> None:
    assert repository_from_workflow_url("https://github.com/alice/XYLO-MD/actions") == "alice/XYLO-MD"
    assert repository_from_workflow_url("https://example.com/alice/XYLO-MD/actions") is None
    assert repository_from_workflow_url("https://github.com/alice") is None


def test_no_workflow_url_means_no_logs(store: InMemoryDeploymentStore) -> None:
    github = Mock(spec=GitHubClient)

    assert collect_workflow_logs(github, _deployment(store, workflow_url=None)) == []
    github.list_workflow_runs.assert_not_called()


def test_latest_run_steps_are_flattened_and_sorted(store: InMemoryDeploymentStore) -> None:
    github = Mock(spec=GitHubClient)
    github.list_workflow_runs.return_value = [{"id": 202}, {"id": 101}]
    github.list_run_jobs.return_value = [
        {
            "id": 7,
            "steps": [
                {
                    "name": "Install Dependencies",
                    "number": 3,
                    "status": "in_progress",
                    "conclusion": None,
                    "started_at": "2025-01-01T00:00:20Z",
                },
                {
                    "name": "Checkout Code",
                    "number": 1,
                    "status": "completed",
                    "conclusion": "success",
                    "started_at": "2025-01-01T00:00:05Z",
                },
                {
                    "name": "Run Bot",
                    "number": 4,
                    "status": "queued",
                    "conclusion": None,
                    "started_at": None,
                },
            ],
        }
    ]

    entries = collect_workflow_logs(github, _deployment(store, workflow_url="https://github.com/alice/XYLO-MD/actions"))

    github.list_workflow_runs.assert_called_once_with(
        repository="alice/XYLO-MD", branch="xylo-abc123", per_page=10
    )
    github.list_run_jobs.assert_called_once_with(repository="alice/XYLO-MD", run_id=202)
    assert [e.step for e in entries] == ["Checkout Code", "Install Dependencies"]
    assert [e.status for e in entries] == ["success", "in_progress"]

    first = entries[0].to_json()
    assert first == {
        "id": "7-1",
        "timestamp": "2025-01-01T00:00:05Z",
        "step": "Checkout Code",
        "status": "success",
        "message": "Step: Checkout Code",
        "runId": 202,
        "jobId": 7,
        "stepNumber": 1,
    }


def test_no_runs_yet(store: InMemoryDeploymentStore) -> None:
    github = Mock(spec=GitHubClient)
    github.list_workflow_runs.return_value = []

    deployment = _deployment(store, workflow_url="https://github.com/alice/XYLO-MD/actions")

    assert collect_workflow_logs(github, deployment) == []
    github.list_run_jobs.assert_not_called()
