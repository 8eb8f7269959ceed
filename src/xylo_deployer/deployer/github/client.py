"""GitHub API client wrapper for the deployer.

REST calls go through a single `requests.Session` so every call shares auth headers and
error normalization. PyGithub is only used to resolve the authenticated user.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any

import requests
from github import Auth, Github, GithubException

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class GitHubApiError(Exception):
    """Raised for any non-2xx GitHub response other than 404."""

    status_code: int
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class RepoFile:
    """A text file read through the contents API."""

    path: str
    content: str
    sha: str


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        message = data.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return f"GitHub API request failed with status {resp.status_code}"


def _unexpected(message: str) -> GitHubApiError:
    return GitHubApiError(status_code=502, message=message)


class GitHubClient:
    """Small wrapper around the GitHub REST API for the deploy flow."""

    def __init__(
        self,
        *,
        token: str,
        base_url: str = "https://api.github.com",
        github_api: Github | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")

        self._rest_base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "xylo-deployer",
            }
        )
        self._github = github_api or Github(auth=Auth.Token(token), base_url=self._rest_base_url)

    def _url(self, path: str) -> str:
        return f"{self._rest_base_url}/{path.lstrip('/')}"

    def _repo_url(self, *, repository: str, path: str) -> str:
        repo = repository.strip().strip("/")
        path = path.lstrip("/")
        if not path:
            return self._url(f"repos/{repo}")
        return self._url(f"repos/{repo}/{path}")

    def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any | None:
        """Issue an authenticated request.

        Returns:
            The decoded JSON body, ``{}`` for empty bodies, or ``None`` on 404.

        Raises:
            GitHubApiError: for any other non-2xx response, a transport failure or a body
                that is not JSON.
        """

        try:
            resp = self._session.request(method, url, json=json, params=params, timeout=30)
        except requests.RequestException as e:
            logger.warning(
                "GitHub request failed", extra={"method": method, "url": url, "error": str(e)}
            )
            raise GitHubApiError(status_code=502, message=f"GitHub request failed: {e}") from e
        if resp.status_code == 404:
            logger.debug("GitHub resource not found", extra={"method": method, "url": url})
            return None
        if not resp.ok:
            raise GitHubApiError(status_code=resp.status_code, message=_error_message(resp))
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise _unexpected("GitHub returned a response that is not JSON") from e

    def get_authenticated_login(self) -> str:
        try:
            login = self._github.get_user().login
        except GithubException as e:
            message = "Failed to resolve authenticated GitHub user"
            if isinstance(e.data, dict) and isinstance(e.data.get("message"), str):
                message = e.data["message"]
            raise GitHubApiError(status_code=e.status, message=message) from e
        except requests.RequestException as e:
            raise GitHubApiError(status_code=502, message=f"GitHub request failed: {e}") from e
        if not isinstance(login, str) or not login.strip():
            raise GitHubApiError(status_code=502, message="GitHub user response missing login")
        return login

    def get_repository(self, *, repository: str) -> dict[str, Any] | None:
        data = self.request("GET", self._repo_url(repository=repository, path=""))
        if data is None:
            return None
        if not isinstance(data, dict):
            raise _unexpected("Unexpected repository response")
        return data

    def create_fork(self, *, repository: str) -> dict[str, Any]:
        data = self.request("POST", self._repo_url(repository=repository, path="forks"), json={})
        if not isinstance(data, dict):
            raise GitHubApiError(status_code=404, message=f"Repository not found: {repository}")
        logger.info(
            "Fork requested",
            extra={"upstream": repository, "fork": data.get("full_name")},
        )
        return data

    def get_actions_permissions(self, *, repository: str) -> dict[str, Any] | None:
        data = self.request("GET", self._repo_url(repository=repository, path="actions/permissions"))
        if data is None:
            return None
        if not isinstance(data, dict):
            raise _unexpected("Unexpected actions permissions response")
        return data

    def enable_actions(self, *, repository: str) -> None:
        url = self._repo_url(repository=repository, path="actions/permissions")
        result = self.request("PUT", url, json={"enabled": True, "allowed_actions": "all"})
        if result is None:
            raise GitHubApiError(status_code=404, message=f"Repository not found: {repository}")

    def get_branch_head_sha(self, *, repository: str, branch: str) -> str | None:
        """Return the tip commit sha of a branch, or None when the branch does not exist."""

        if not branch.strip():
            raise ValueError("branch is required")
        data = self.request("GET", self._repo_url(repository=repository, path=f"git/ref/heads/{branch}"))
        if data is None:
            return None
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            raise _unexpected("Unexpected ref response: missing object")
        sha = obj.get("sha")
        if not isinstance(sha, str) or not sha.strip():
            raise _unexpected("Unexpected ref response: missing sha")
        return sha

    def create_branch(self, *, repository: str, branch: str, base_sha: str) -> None:
        if not branch.strip():
            raise ValueError("branch is required")
        if not base_sha.strip():
            raise ValueError("base_sha is required")
        url = self._repo_url(repository=repository, path="git/refs")
        result = self.request("POST", url, json={"ref": f"refs/heads/{branch}", "sha": base_sha})
        if result is None:
            raise GitHubApiError(status_code=404, message=f"Repository not found: {repository}")

    def get_text_file(self, *, repository: str, path: str, ref: str = "") -> RepoFile | None:
        """Return a text file at a ref, or None if it is not present."""

        norm = path.lstrip("/")
        params = {"ref": ref} if ref.strip() else None
        data = self.request(
            "GET", self._repo_url(repository=repository, path=f"contents/{norm}"), params=params
        )
        if data is None:
            return None
        if not isinstance(data, dict):
            raise _unexpected(f"Unexpected contents response for {path}: not a file")

        file_sha = data.get("sha")
        if not isinstance(file_sha, str) or not file_sha.strip():
            raise _unexpected("Unexpected contents response: missing sha")

        content = data.get("content")
        if data.get("encoding") == "base64" and isinstance(content, str):
            try:
                text = base64.b64decode(content.encode("utf-8")).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as e:
                raise _unexpected(f"{norm} is not a UTF-8 text file") from e
            return RepoFile(path=norm, content=text, sha=file_sha)
        if isinstance(content, str):
            return RepoFile(path=norm, content=content, sha=file_sha)
        raise _unexpected("Unexpected contents response: missing content")

    def put_text_file(
        self,
        *,
        repository: str,
        path: str,
        content: str,
        branch: str,
        message: str,
        sha: str | None = None,
    ) -> str:
        """Create (no sha) or update (sha of the replaced blob) a text file.

        Returns:
            New file sha.
        """

        norm = path.lstrip("/")
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("utf-8"),
            "branch": branch,
        }
        if sha is not None and sha.strip():
            payload["sha"] = sha

        data = self.request(
            "PUT", self._repo_url(repository=repository, path=f"contents/{norm}"), json=payload
        )
        if data is None:
            raise GitHubApiError(status_code=404, message=f"Repository not found: {repository}")
        content_info = data.get("content") if isinstance(data, dict) else None
        if isinstance(content_info, dict):
            new_sha = content_info.get("sha")
            if isinstance(new_sha, str) and new_sha.strip():
                return new_sha
        raise _unexpected("Unexpected contents upsert response: missing content sha")

    def dispatch_workflow(self, *, repository: str, workflow_file: str, ref: str) -> None:
        url = self._repo_url(
            repository=repository, path=f"actions/workflows/{workflow_file}/dispatches"
        )
        result = self.request("POST", url, json={"ref": ref})
        if result is None:
            raise GitHubApiError(
                status_code=404,
                message=f"Workflow {workflow_file} not found in {repository}",
            )
        logger.info(
            "Workflow dispatched",
            extra={"repo": repository, "workflow_file": workflow_file, "ref": ref},
        )

    def list_workflow_runs(
        self,
        *,
        repository: str,
        branch: str | None = None,
        per_page: int = 10,
    ) -> list[dict[str, Any]]:
        """Return the most recent workflow runs (newest first)."""

        params: dict[str, Any] = {"per_page": per_page}
        if branch:
            params["branch"] = branch
        data = self.request(
            "GET", self._repo_url(repository=repository, path="actions/runs"), params=params
        )
        if not isinstance(data, dict):
            return []
        runs = data.get("workflow_runs")
        if not isinstance(runs, list):
            return []
        return [r for r in runs if isinstance(r, dict)]

    def list_run_jobs(self, *, repository: str, run_id: int) -> list[dict[str, Any]]:
        data = self.request(
            "GET", self._repo_url(repository=repository, path=f"actions/runs/{run_id}/jobs")
        )
        if not isinstance(data, dict):
            return []
        jobs = data.get("jobs")
        if not isinstance(jobs, list):
            return []
        return [j for j in jobs if isinstance(j, dict)]

    def close(self) -> None:
        self._session.close()
        self._github.close()
