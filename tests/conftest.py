"""Test configuration and fixtures."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from xylo_deployer.deployer.github.client import GitHubClient
from xylo_deployer.deployer.service import DeploymentTarget
from xylo_deployer.deployer.store import InMemoryDeploymentStore


@pytest.fixture
def store() -> InMemoryDeploymentStore:
    return InMemoryDeploymentStore()


@pytest.fixture
def target() -> DeploymentTarget:
    return DeploymentTarget(owner="XYLO-MD", name="XYLO-MD")


@pytest.fixture
def github() -> Mock:
    """A GitHub client for the happy path: existing fork, Actions on, fresh branch."""

    mock_github = Mock(spec=GitHubClient)
    mock_github.get_authenticated_login.return_value = "alice"
    mock_github.get_repository.return_value = {
        "full_name": "alice/XYLO-MD",
        "fork": True,
        "parent": {"full_name": "XYLO-MD/XYLO-MD"},
    }
    mock_github.get_actions_permissions.return_value = {"enabled": True, "allowed_actions": "all"}
    mock_github.get_branch_head_sha.side_effect = lambda *, repository, branch: (
        "base-sha" if branch == "main" else None
    )
    mock_github.get_text_file.return_value = None
    mock_github.put_text_file.return_value = "new-sha"
    mock_github.dispatch_workflow.return_value = None
    return mock_github
