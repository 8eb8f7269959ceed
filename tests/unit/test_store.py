"""Unit tests for deployment persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from xylo_deployer.deployer.store import (
    DeploymentNotFound,
    DeploymentStore,
    InMemoryDeploymentStore,
    JsonDeploymentStore,
)


@pytest.fixture(params=["memory", "json"])
def any_store(request: pytest.FixtureRequest, tmp_path: Path) -> DeploymentStore:
    if request.param == "memory":
        return InMemoryDeploymentStore()
    return JsonDeploymentStore(tmp_path / "deploy_state")


def test_create_and_update_deployment(any_store: DeploymentStore) -> None:
    record = any_store.create_deployment(
        session_id="abc123", github_username="alice", repository_name="XYLO-MD"
    )
    assert record.status == "pending"
    assert record.branch_name is None
    assert any_store.get_deployment(record.id) == record

    updated = any_store.update_deployment(
        record.id, status="running", branch_name="xylo-abc123", workflow_url="https://example"
    )
    assert updated.status == "running"
    assert updated.branch_name == "xylo-abc123"
    assert updated.created_at == record.created_at
    assert updated.updated_at >= record.updated_at
    assert any_store.get_deployment(record.id) == updated


def test_update_rejects_unknown_fields_and_statuses(any_store: DeploymentStore) -> None:
    record = any_store.create_deployment(
        session_id="abc123", github_username="alice", repository_name="XYLO-MD"
    )

    with pytest.raises(ValueError):
        any_store.update_deployment(record.id, colour="blue")
    with pytest.raises(ValidationError):
        any_store.update_deployment(record.id, status="exploded")


def test_missing_deployment(any_store: DeploymentStore) -> None:
    assert any_store.get_deployment("nope") is None
    with pytest.raises(DeploymentNotFound):
        any_store.update_deployment("nope", status="failed")
    with pytest.raises(DeploymentNotFound):
        any_store.append_log("nope", step="init", status="running", message="")


def test_deployments_listed_per_user_newest_first(any_store: DeploymentStore) -> None:
    first = any_store.create_deployment(session_id="a", github_username="alice", repository_name="R")
    any_store.create_deployment(session_id="b", github_username="bob", repository_name="R")
    second = any_store.create_deployment(session_id="c", github_username="alice", repository_name="R")

    listed = any_store.list_deployments_for_user("alice")

    assert {d.id for d in listed} == {first.id, second.id}
    assert [d.created_at for d in listed] == sorted((d.created_at for d in listed), reverse=True)
    assert any_store.list_deployments_for_user("carol") == []


def test_logs_are_chronological(any_store: DeploymentStore) -> None:
    record = any_store.create_deployment(session_id="a", github_username="alice", repository_name="R")
    other = any_store.create_deployment(session_id="b", github_username="alice", repository_name="R")

    any_store.append_log(record.id, step="init", status="running", message="Getting user information...")
    any_store.append_log(other.id, step="init", status="running", message="other")
    any_store.append_log(record.id, step="init", status="success", message="Connected as alice")

    logs = any_store.list_logs(record.id)

    assert [(log.step, log.status) for log in logs] == [("init", "running"), ("init", "success")]
    timestamps = [log.timestamp for log in logs]
    assert timestamps == sorted(timestamps)


def test_upsert_user(any_store: DeploymentStore) -> None:
    assert any_store.get_user("alice") is None

    created = any_store.upsert_user("alice")
    again = any_store.upsert_user("alice")

    assert again.created_at == created.created_at
    assert again.last_login_at >= created.last_login_at
    assert any_store.get_user("alice") == again


def test_sessions_are_created_resolved_and_deleted(any_store: DeploymentStore) -> None:
    record = any_store.create_session(github_login="alice", github_token="gho_alice", ttl_seconds=3600)

    assert len(record.session_token) >= 32
    assert any_store.get_session(record.session_token) == record
    assert any_store.get_session("unknown") is None

    any_store.delete_session(record.session_token)
    any_store.delete_session(record.session_token)

    assert any_store.get_session(record.session_token) is None


def test_expired_session_is_absent(any_store: DeploymentStore) -> None:
    record = any_store.create_session(github_login="alice", github_token="gho_alice", ttl_seconds=0)

    assert any_store.get_session(record.session_token) is None


def test_json_store_keeps_sessions_across_instances(tmp_path: Path) -> None:
    root = tmp_path / "deploy_state"
    record = JsonDeploymentStore(root).create_session(
        github_login="alice", github_token="gho_alice", ttl_seconds=3600
    )

    reopened = JsonDeploymentStore(root)
    assert reopened.get_session(record.session_token) == record
    reopened.delete_session(record.session_token)
    assert JsonDeploymentStore(root).get_session(record.session_token) is None

def test_json_store_persists_across_instances(tmp_path: Path) -> None:
    root = tmp_path / "deploy_state"
    record = JsonDeploymentStore(root).create_deployment(
        session_id="abc123", github_username="alice", repository_name="XYLO-MD"
    )
    JsonDeploymentStore(root).append_log(record.id, step="init", status="running", message="")

    reopened = JsonDeploymentStore(root)
    assert reopened.get_deployment(record.id) == record
    assert len(reopened.list_logs(record.id)) == 1

    raw = json.loads((root / "deployments.json").read_text(encoding="utf-8"))
    assert raw[0]["id"] == record.id
    assert raw[0]["session_id"] == "abc123"


def test_json_store_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    root = tmp_path / "deploy_state"
    root.mkdir()
    (root / "deployments.json").write_text("{not json", encoding="utf-8")

    store = JsonDeploymentStore(root)

    assert store.list_deployments_for_user("alice") == []
    record = store.create_deployment(session_id="a", github_username="alice", repository_name="R")
    assert store.get_deployment(record.id) is not None
