"""Relay GitHub Actions step status to WebSocket subscribers.

One asyncio task polls per deployment id. The task keeps polling while the deployment
is pending/running and at least one subscriber remains; GitHub calls run in a worker
thread so the event loop is never blocked by `requests`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from xylo_deployer.deployer.github.client import GitHubClient
from xylo_deployer.deployer.store import ACTIVE_STATUSES, DeploymentRecord, DeploymentStore
from xylo_deployer.deployer.workflow_logs import collect_workflow_logs

logger = logging.getLogger(__name__)


class LogSubscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


def logs_message(deployment_id: str, logs: list[dict[str, object]]) -> dict[str, object]:
    return {
        "type": "logs",
        "deploymentId": deployment_id,
        "logs": logs,
        "timestamp": datetime.now(tz=UTC).isoformat(),
    }


class LogRelay:
    def __init__(
        self,
        *,
        store: DeploymentStore,
        client_factory: Callable[[str], GitHubClient],
        poll_interval_seconds: float = 3.0,
        retry_interval_seconds: float = 5.0,
    ) -> None:
        self._store = store
        self._client_factory = client_factory
        self._poll_interval_seconds = poll_interval_seconds
        self._retry_interval_seconds = retry_interval_seconds

        self._subscribers: dict[str, set[LogSubscriber]] = {}
        self._tokens: dict[str, str] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def subscribers(self, deployment_id: str) -> frozenset[LogSubscriber]:
        return frozenset(self._subscribers.get(deployment_id, ()))

    def is_streaming(self, deployment_id: str) -> bool:
        task = self._tasks.get(deployment_id)
        return task is not None and not task.done()

    async def subscribe(self, deployment_id: str, subscriber: LogSubscriber, *, token: str) -> None:
        self._subscribers.setdefault(deployment_id, set()).add(subscriber)
        # The most recent subscriber's token is used for subsequent polls.
        self._tokens[deployment_id] = token
        logger.info("Client subscribed to deployment logs", extra={"deployment_id": deployment_id})

        if not self.is_streaming(deployment_id):
            self._tasks[deployment_id] = asyncio.create_task(
                self._stream(deployment_id), name=f"log-relay-{deployment_id}"
            )

    def unsubscribe(self, deployment_id: str, subscriber: LogSubscriber) -> None:
        subscribers = self._subscribers.get(deployment_id)
        if subscribers is None:
            return
        subscribers.discard(subscriber)
        if not subscribers:
            self._teardown(deployment_id)

    def unsubscribe_all(self, subscriber: LogSubscriber) -> None:
        for deployment_id in list(self._subscribers):
            self.unsubscribe(deployment_id, subscriber)

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        for deployment_id in list(self._subscribers):
            self._teardown(deployment_id)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _teardown(self, deployment_id: str) -> None:
        self._subscribers.pop(deployment_id, None)
        self._tokens.pop(deployment_id, None)
        task = self._tasks.pop(deployment_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        logger.info("Log stream torn down", extra={"deployment_id": deployment_id})

    def _fetch(self, deployment: DeploymentRecord, token: str) -> list[dict[str, object]]:
        github = self._client_factory(token)
        try:
            return [entry.to_json() for entry in collect_workflow_logs(github, deployment)]
        finally:
            github.close()

    async def _broadcast(self, deployment_id: str, message: dict[str, object]) -> None:
        for subscriber in list(self._subscribers.get(deployment_id, ())):
            try:
                await subscriber.send_json(message)
            except Exception as e:
                # Closed sockets are dropped; the remaining subscribers still get the update.
                logger.info(
                    "Dropping log subscriber after failed send",
                    extra={"deployment_id": deployment_id, "error": str(e)},
                )
                self.unsubscribe(deployment_id, subscriber)

    def _is_current_stream(self, deployment_id: str) -> bool:
        # A stream torn down from inside its own task is no longer registered, and a later
        # subscribe may already have started its replacement.
        return self._tasks.get(deployment_id) is asyncio.current_task() and bool(
            self._subscribers.get(deployment_id)
        )

    async def _stream(self, deployment_id: str) -> None:
        try:
            while self._is_current_stream(deployment_id):
                delay = self._poll_interval_seconds
                try:
                    deployment = await asyncio.to_thread(self._store.get_deployment, deployment_id)
                    if deployment is None:
                        logger.info(
                            "Deployment no longer exists, stopping log stream",
                            extra={"deployment_id": deployment_id},
                        )
                        return

                    token = self._tokens.get(deployment_id, "")
                    logs = await asyncio.to_thread(self._fetch, deployment, token)
                    if not self._is_current_stream(deployment_id):
                        return
                    await self._broadcast(deployment_id, logs_message(deployment_id, logs))

                    if deployment.status not in ACTIVE_STATUSES:
                        logger.info(
                            "Stopping log stream for finished deployment",
                            extra={"deployment_id": deployment_id, "status": deployment.status},
                        )
                        return
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(
                        "Error in log streaming", extra={"deployment_id": deployment_id}
                    )
                    delay = self._retry_interval_seconds

                await asyncio.sleep(delay)
        finally:
            if self._tasks.get(deployment_id) is asyncio.current_task():
                del self._tasks[deployment_id]
