"""Unit tests for the GitHub REST wrapper (fake requests session)."""

from __future__ import annotations

import base64
import json
from typing import Any
from unittest.mock import Mock

import pytest
import requests
from github import Github, GithubException

from xylo_deployer.deployer.github.client import GitHubApiError, GitHubClient


def _response(status_code: int, body: Any = None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status_code
    resp._content = b"" if body is None else json.dumps(body).encode("utf-8")
    return resp


class FakeSession:
    def __init__(self, *responses: requests.Response) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[dict[str, Any]] = []
        self._responses = list(responses)
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append({"method": method, "url": url, **kwargs})
        return self._responses.pop(0)

    def close(self) -> None:
        self.closed = True


def _client(*responses: requests.Response) -> tuple[GitHubClient, FakeSession, Mock]:
    session = FakeSession(*responses)
    github_api = Mock(spec=Github)
    client = GitHubClient(
        token="test-token",
        base_url="https://api.github.com/",
        github_api=github_api,
        session=session,  # type: ignore[arg-type]
    )
    return client, session, github_api


def test_token_is_required() -> None:
    with pytest.raises(ValueError):
        GitHubClient(token="", github_api=Mock(spec=Github), session=FakeSession())  # type: ignore[arg-type]


def test_auth_headers_are_set() -> None:
    _, session, _ = _client()

    assert session.headers["Authorization"] == "Bearer test-token"
    assert session.headers["Accept"] == "application/vnd.github+json"


def test_repo_root_url_has_no_trailing_slash() -> None:
    client, _, _ = _client()

    assert client._repo_url(repository="alice/XYLO-MD/", path="") == "https://api.github.com/repos/alice/XYLO-MD"
    assert (
        client._repo_url(repository="alice/XYLO-MD", path="/forks")
        == "https://api.github.com/repos/alice/XYLO-MD/forks"
    )


def test_404_means_absent() -> None:
    client, session, _ = _client(_response(404, {"message": "Not Found"}))

    assert client.get_branch_head_sha(repository="alice/XYLO-MD", branch="xylo-abc123") is None
    assert session.calls[0]["url"] == "https://api.github.com/repos/alice/XYLO-MD/git/ref/heads/xylo-abc123"


def test_error_status_raises_with_github_message() -> None:
    client, _, _ = _client(_response(422, {"message": "Reference already exists"}))

    with pytest.raises(GitHubApiError) as exc_info:
        client.create_branch(repository="alice/XYLO-MD", branch="xylo-abc123", base_sha="abc")

    assert exc_info.value.status_code == 422
    assert str(exc_info.value) == "Reference already exists"


def test_empty_body_is_an_empty_dict() -> None:
    client, session, _ = _client(_response(204))

    client.dispatch_workflow(repository="alice/XYLO-MD", workflow_file="deploy.yml", ref="xylo-abc123")

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://api.github.com/repos/alice/XYLO-MD/actions/workflows/deploy.yml/dispatches"
    assert call["json"] == {"ref": "xylo-abc123"}


def test_dispatch_of_missing_workflow_raises() -> None:
    client, _, _ = _client(_response(404, {"message": "Not Found"}))

    with pytest.raises(GitHubApiError) as exc_info:
        client.dispatch_workflow(repository="alice/XYLO-MD", workflow_file="deploy.yml", ref="main")

    assert exc_info.value.status_code == 404


def test_get_text_file_decodes_base64() -> None:
    encoded = base64.b64encode(b"SESSION_ID=old\n").decode("ascii")
    client, session, _ = _client(
        _response(200, {"sha": "file-sha", "encoding": "base64", "content": encoded})
    )

    file = client.get_text_file(repository="alice/XYLO-MD", path="/.env", ref="xylo-abc123")

    assert file is not None
    assert file.path == ".env"
    assert file.content == "SESSION_ID=old\n"
    assert file.sha == "file-sha"
    assert session.calls[0]["params"] == {"ref": "xylo-abc123"}


def test_put_text_file_sends_sha_only_for_updates() -> None:
    client, session, _ = _client(
        _response(201, {"content": {"sha": "created"}}),
        _response(200, {"content": {"sha": "updated"}}),
    )

    created = client.put_text_file(
        repository="alice/XYLO-MD", path="config.js", content="x", branch="b", message="m"
    )
    updated = client.put_text_file(
        repository="alice/XYLO-MD", path="config.js", content="y", branch="b", message="m", sha="old"
    )

    assert (created, updated) == ("created", "updated")
    assert "sha" not in session.calls[0]["json"]
    assert session.calls[1]["json"]["sha"] == "old"
    assert base64.b64decode(session.calls[1]["json"]["content"]) == b"y"


def test_enable_actions_payload() -> None:
    client, session, _ = _client(_response(204))

    client.enable_actions(repository="alice/XYLO-MD")

    assert session.calls[0]["method"] == "PUT"
    assert session.calls[0]["json"] == {"enabled": True, "allowed_actions": "all"}


def test_list_workflow_runs_filters_by_branch() -> None:
    client, session, _ = _client(_response(200, {"workflow_runs": [{"id": 2}, "junk", {"id": 1}]}))

    runs = client.list_workflow_runs(repository="alice/XYLO-MD", branch="xylo-abc123")

    assert runs == [{"id": 2}, {"id": 1}]
    assert session.calls[0]["params"] == {"per_page": 10, "branch": "xylo-abc123"}


def test_authenticated_login_uses_pygithub() -> None:
    client, _, github_api = _client()
    github_api.get_user.return_value = Mock(login="alice")

    assert client.get_authenticated_login() == "alice"


def test_authenticated_login_maps_pygithub_errors() -> None:
    client, _, github_api = _client()
    github_api.get_user.side_effect = GithubException(401, {"message": "Bad credentials"}, None)

    with pytest.raises(GitHubApiError) as exc_info:
        client.get_authenticated_login()

    assert exc_info.value.status_code == 401
    assert str(exc_info.value) == "Bad credentials"


def test_close_releases_both_clients() -> None:
    client, session, github_api = _client()

    client.close()

    assert session.closed is True
    github_api.close.assert_called_once_with()


class UnreachableSession(FakeSession):
    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append({"method": method, "url": url, **kwargs})
        raise requests.ConnectionError("connection refused")


def test_transport_failure_raises_api_error() -> None:
    session = UnreachableSession()
    client = GitHubClient(
        token="test-token", github_api=Mock(spec=Github), session=session  # type: ignore[arg-type]
    )

    with pytest.raises(GitHubApiError) as exc_info:
        client.get_actions_permissions(repository="alice/XYLO-MD")

    assert exc_info.value.status_code == 502
    assert "connection refused" in str(exc_info.value)


def test_authenticated_login_maps_transport_errors() -> None:
    client, _, github_api = _client()
    github_api.get_user.side_effect = requests.Timeout("read timed out")

    with pytest.raises(GitHubApiError) as exc_info:
        client.get_authenticated_login()

    assert exc_info.value.status_code == 502


def test_non_json_body_raises_api_error() -> None:
    resp = requests.Response()
    resp.status_code = 200
    resp._content = b"<html>maintenance</html>"
    client, _, _ = _client(resp)

    with pytest.raises(GitHubApiError):
        client.get_repository(repository="alice/XYLO-MD")


def test_get_text_file_rejects_non_utf8_content() -> None:
    encoded = base64.b64encode("SESSION_ID=caf\xe9\n".encode("latin-1")).decode("ascii")
    client, _, _ = _client(_response(200, {"sha": "file-sha", "encoding": "base64", "content": encoded}))

    with pytest.raises(GitHubApiError) as exc_info:
        client.get_text_file(repository="alice/XYLO-MD", path=".env")

    assert ".env" in str(exc_info.value)


def test_get_text_file_rejects_directory_listing() -> None:
    client, _, _ = _client(_response(200, [{"name": "a.js"}, {"name": "b.js"}]))

    with pytest.raises(GitHubApiError):
        client.get_text_file(repository="alice/XYLO-MD", path="lib")
