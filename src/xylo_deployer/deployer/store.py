"""Deployment, deployment-log, user and browser-session record stores.

`JsonDeploymentStore` persists to JSON files under a state directory so the dashboard
survives restarts (best-effort). `InMemoryDeploymentStore` keeps everything in process
and is used by tests or when `XYLO_STORAGE=memory`.

Both stores are guarded by a lock: deploy requests write from the server's worker
threads while the log relay reads from its own worker threads.
"""

from __future__ import annotations

import json
import logging
import secrets
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Literal, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DeploymentStatus = Literal["pending", "running", "success", "failed"]
StepStatus = Literal["pending", "running", "success", "failed", "warning"]

ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "running"})


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


class UserRecord(BaseModel):
    github_login: str
    created_at: str
    last_login_at: str


class SessionRecord(BaseModel):
    """A signed-in browser session. Only `session_token` ever leaves the server."""

    session_token: str
    github_login: str
    github_token: str
    created_at: str
    expires_at: str

    def expired(self, now: datetime | None = None) -> bool:
        return datetime.fromisoformat(self.expires_at) <= (now or datetime.now(tz=UTC))


class DeploymentRecord(BaseModel):
    id: str
    session_id: str
    branch_name: str | None = None
    github_username: str
    repository_name: str
    status: DeploymentStatus = "pending"
    message: str | None = None
    workflow_url: str | None = None
    created_at: str
    updated_at: str


class DeploymentLogRecord(BaseModel):
    id: str
    deployment_id: str
    step: str
    status: StepStatus
    message: str = Field(default="")
    timestamp: str


@dataclass(eq=False)
class DeploymentNotFound(Exception):
    deployment_id: str

    def __str__(self) -> str:
        return f"Deployment not found: {self.deployment_id}"


class DeploymentStore(Protocol):
    def create_deployment(
        self,
        *,
        session_id: str,
        github_username: str,
        repository_name: str,
        branch_name: str | None = None,
        status: DeploymentStatus = "pending",
        message: str | None = None,
    ) -> DeploymentRecord: ...

    def get_deployment(self, deployment_id: str) -> DeploymentRecord | None: ...

    def update_deployment(self, deployment_id: str, **updates: object) -> DeploymentRecord: ...

    def list_deployments_for_user(self, github_username: str) -> list[DeploymentRecord]: ...

    def append_log(
        self, deployment_id: str, *, step: str, status: StepStatus, message: str
    ) -> DeploymentLogRecord: ...

    def list_logs(self, deployment_id: str) -> list[DeploymentLogRecord]: ...

    def upsert_user(self, github_login: str) -> UserRecord: ...

    def get_user(self, github_login: str) -> UserRecord | None: ...

    def create_session(
        self, *, github_login: str, github_token: str, ttl_seconds: int
    ) -> SessionRecord: ...

    def get_session(self, session_token: str) -> SessionRecord | None: ...

    def delete_session(self, session_token: str) -> None: ...


class InMemoryDeploymentStore:
    """Process-local store. Contents are lost on restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._deployments: dict[str, DeploymentRecord] = {}
        self._logs: list[DeploymentLogRecord] = []
        self._users: dict[str, UserRecord] = {}
        self._sessions: dict[str, SessionRecord] = {}

    def create_deployment(
        self,
        *,
        session_id: str,
        github_username: str,
        repository_name: str,
        branch_name: str | None = None,
        status: DeploymentStatus = "pending",
        message: str | None = None,
    ) -> DeploymentRecord:
        now = _utc_iso_now()
        record = DeploymentRecord(
            id=_new_id(),
            session_id=session_id,
            branch_name=branch_name,
            github_username=github_username,
            repository_name=repository_name,
            status=status,
            message=message,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._deployments[record.id] = record
        return record

    def get_deployment(self, deployment_id: str) -> DeploymentRecord | None:
        with self._lock:
            return self._deployments.get(deployment_id)

    def update_deployment(self, deployment_id: str, **updates: object) -> DeploymentRecord:
        with self._lock:
            existing = self._deployments.get(deployment_id)
            if existing is None:
                raise DeploymentNotFound(deployment_id)
            merged = _merge(existing, updates)
            self._deployments[deployment_id] = merged
            return merged

    def list_deployments_for_user(self, github_username: str) -> list[DeploymentRecord]:
        with self._lock:
            items = [d for d in self._deployments.values() if d.github_username == github_username]
        return _newest_first(items)

    def append_log(
        self, deployment_id: str, *, step: str, status: StepStatus, message: str
    ) -> DeploymentLogRecord:
        with self._lock:
            if deployment_id not in self._deployments:
                raise DeploymentNotFound(deployment_id)
            record = DeploymentLogRecord(
                id=_new_id(),
                deployment_id=deployment_id,
                step=step,
                status=status,
                message=message,
                timestamp=_utc_iso_now(),
            )
            self._logs.append(record)
            return record

    def list_logs(self, deployment_id: str) -> list[DeploymentLogRecord]:
        with self._lock:
            items = [log for log in self._logs if log.deployment_id == deployment_id]
        return _chronological(items)

    def upsert_user(self, github_login: str) -> UserRecord:
        with self._lock:
            user = _touch_user(self._users.get(github_login), github_login)
            self._users[github_login] = user
            return user

    def get_user(self, github_login: str) -> UserRecord | None:
        with self._lock:
            return self._users.get(github_login)

    def create_session(
        self, *, github_login: str, github_token: str, ttl_seconds: int
    ) -> SessionRecord:
        record = _new_session(github_login, github_token, ttl_seconds)
        with self._lock:
            self._sessions[record.session_token] = record
        return record

    def get_session(self, session_token: str) -> SessionRecord | None:
        with self._lock:
            record = self._sessions.get(session_token)
            if record is not None and record.expired():
                del self._sessions[session_token]
                return None
            return record

    def delete_session(self, session_token: str) -> None:
        with self._lock:
            self._sessions.pop(session_token, None)


class JsonDeploymentStore:
    """JSON-file backed store.

    Layout under `root`:
    - deployments.json
    - deployment_logs.json
    - users.json
    - sessions.json (GitHub tokens; keep the state directory private)
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.Lock()

    @property
    def deployments_file(self) -> Path:
        return self._root / "deployments.json"

    @property
    def logs_file(self) -> Path:
        return self._root / "deployment_logs.json"

    @property
    def users_file(self) -> Path:
        return self._root / "users.json"

    @property
    def sessions_file(self) -> Path:
        return self._root / "sessions.json"

    def _load_unlocked(self, path: Path) -> list[dict[str, object]]:
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "State file is not valid JSON; treating as empty", extra={"path": str(path)}
            )
            return []
        if not isinstance(raw, list):
            logger.warning(
                "State file has unexpected shape; treating as empty", extra={"path": str(path)}
            )
            return []
        return [item for item in raw if isinstance(item, dict)]

    def _save_unlocked(self, path: Path, items: Sequence[BaseModel]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = [m.model_dump(mode="json") for m in items]
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")

    def _deployments_unlocked(self) -> list[DeploymentRecord]:
        return [DeploymentRecord.model_validate(d) for d in self._load_unlocked(self.deployments_file)]

    def _logs_unlocked(self) -> list[DeploymentLogRecord]:
        return [DeploymentLogRecord.model_validate(d) for d in self._load_unlocked(self.logs_file)]

    def _users_unlocked(self) -> list[UserRecord]:
        return [UserRecord.model_validate(d) for d in self._load_unlocked(self.users_file)]

    def _sessions_unlocked(self) -> list[SessionRecord]:
        return [SessionRecord.model_validate(d) for d in self._load_unlocked(self.sessions_file)]

    def create_deployment(
        self,
        *,
        session_id: str,
        github_username: str,
        repository_name: str,
        branch_name: str | None = None,
        status: DeploymentStatus = "pending",
        message: str | None = None,
    ) -> DeploymentRecord:
        with self._lock:
            deployments = self._deployments_unlocked()
            now = _utc_iso_now()
            record = DeploymentRecord(
                id=_new_id(),
                session_id=session_id,
                branch_name=branch_name,
                github_username=github_username,
                repository_name=repository_name,
                status=status,
                message=message,
                created_at=now,
                updated_at=now,
            )
            deployments.append(record)
            self._save_unlocked(self.deployments_file, deployments)
            return record

    def get_deployment(self, deployment_id: str) -> DeploymentRecord | None:
        with self._lock:
            for deployment in self._deployments_unlocked():
                if deployment.id == deployment_id:
                    return deployment
            return None

    def update_deployment(self, deployment_id: str, **updates: object) -> DeploymentRecord:
        with self._lock:
            deployments = self._deployments_unlocked()
            for idx, deployment in enumerate(deployments):
                if deployment.id != deployment_id:
                    continue
                merged = _merge(deployment, updates)
                deployments[idx] = merged
                self._save_unlocked(self.deployments_file, deployments)
                return merged
            raise DeploymentNotFound(deployment_id)

    def list_deployments_for_user(self, github_username: str) -> list[DeploymentRecord]:
        with self._lock:
            items = [
                d for d in self._deployments_unlocked() if d.github_username == github_username
            ]
        return _newest_first(items)

    def append_log(
        self, deployment_id: str, *, step: str, status: StepStatus, message: str
    ) -> DeploymentLogRecord:
        with self._lock:
            if not any(d.id == deployment_id for d in self._deployments_unlocked()):
                raise DeploymentNotFound(deployment_id)
            logs = self._logs_unlocked()
            record = DeploymentLogRecord(
                id=_new_id(),
                deployment_id=deployment_id,
                step=step,
                status=status,
                message=message,
                timestamp=_utc_iso_now(),
            )
            logs.append(record)
            self._save_unlocked(self.logs_file, logs)
            return record

    def list_logs(self, deployment_id: str) -> list[DeploymentLogRecord]:
        with self._lock:
            items = [log for log in self._logs_unlocked() if log.deployment_id == deployment_id]
        return _chronological(items)

    def upsert_user(self, github_login: str) -> UserRecord:
        with self._lock:
            users = self._users_unlocked()
            for idx, existing in enumerate(users):
                if existing.github_login == github_login:
                    users[idx] = _touch_user(existing, github_login)
                    self._save_unlocked(self.users_file, users)
                    return users[idx]
            user = _touch_user(None, github_login)
            users.append(user)
            self._save_unlocked(self.users_file, users)
            return user

    def get_user(self, github_login: str) -> UserRecord | None:
        with self._lock:
            for user in self._users_unlocked():
                if user.github_login == github_login:
                    return user
            return None

    def create_session(
        self, *, github_login: str, github_token: str, ttl_seconds: int
    ) -> SessionRecord:
        record = _new_session(github_login, github_token, ttl_seconds)
        with self._lock:
            # Expired sessions are pruned whenever a new one is written.
            sessions = [s for s in self._sessions_unlocked() if not s.expired()]
            sessions.append(record)
            self._save_unlocked(self.sessions_file, sessions)
        return record

    def get_session(self, session_token: str) -> SessionRecord | None:
        with self._lock:
            for record in self._sessions_unlocked():
                if record.session_token == session_token:
                    return None if record.expired() else record
            return None

    def delete_session(self, session_token: str) -> None:
        with self._lock:
            sessions = self._sessions_unlocked()
            remaining = [s for s in sessions if s.session_token != session_token]
            if len(remaining) != len(sessions):
                self._save_unlocked(self.sessions_file, remaining)


def _merge(record: DeploymentRecord, updates: dict[str, object]) -> DeploymentRecord:
    unknown = set(updates) - set(DeploymentRecord.model_fields)
    if unknown:
        raise ValueError(f"Unknown deployment fields: {sorted(unknown)}")
    # Round-trip through validation so status values stay within the allowed set.
    data = record.model_dump()
    data.update(updates)
    data["updated_at"] = _utc_iso_now()
    return DeploymentRecord.model_validate(data)


def _new_session(github_login: str, github_token: str, ttl_seconds: int) -> SessionRecord:
    now = datetime.now(tz=UTC)
    return SessionRecord(
        session_token=secrets.token_urlsafe(32),
        github_login=github_login,
        github_token=github_token,
        created_at=now.isoformat(),
        expires_at=(now + timedelta(seconds=ttl_seconds)).isoformat(),
    )


def _touch_user(existing: UserRecord | None, github_login: str) -> UserRecord:
    now = _utc_iso_now()
    if existing is None:
        return UserRecord(github_login=github_login, created_at=now, last_login_at=now)
    return existing.model_copy(update={"last_login_at": now})


def _newest_first(items: list[DeploymentRecord]) -> list[DeploymentRecord]:
    return sorted(items, key=lambda d: d.created_at, reverse=True)


def _chronological(items: list[DeploymentLogRecord]) -> list[DeploymentLogRecord]:
    # sorted() is stable, so equal timestamps keep insertion order.
    return sorted(items, key=lambda log: log.timestamp)
