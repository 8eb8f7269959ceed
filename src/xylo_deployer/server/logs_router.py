"""WebSocket endpoint streaming GitHub Actions step status.

Clients send `{"type": "subscribe" | "unsubscribe", "deploymentId": ...}`; the relay
pushes `{"type": "logs", ...}` messages back. Mounted under `/api`.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from xylo_deployer.deployer.store import DeploymentStore
from xylo_deployer.server.log_relay import LogRelay
from xylo_deployer.server.session import SessionUser, current_user, store_of

logger = logging.getLogger(__name__)

router = APIRouter()


def _relay_of(websocket: WebSocket) -> LogRelay:
    relay = getattr(websocket.app.state, "relay", None)
    if not isinstance(relay, LogRelay):
        raise RuntimeError("Log relay not configured")
    return relay


def _owns_deployment(user: SessionUser, store: DeploymentStore, deployment_id: str) -> bool:
    record = store.get_deployment(deployment_id)
    return record is not None and record.github_username == user.login


async def _send_error(websocket: WebSocket, deployment_id: str, message: str) -> None:
    await websocket.send_json({"type": "error", "deploymentId": deployment_id, "message": message})


@router.websocket("/logs-ws")
async def logs_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    relay = _relay_of(websocket)
    store = store_of(websocket)
    logger.info("Log socket connected")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.debug("Ignoring malformed log socket message")
                continue
            if not isinstance(message, dict):
                continue

            kind = message.get("type")
            deployment_id = message.get("deploymentId")
            if not isinstance(deployment_id, str) or not deployment_id:
                continue

            if kind == "subscribe":
                # Looked up per message: a logout revokes the session for sockets already open.
                user = await asyncio.to_thread(current_user, websocket)
                if user is None:
                    await _send_error(websocket, deployment_id, "Not authenticated")
                    continue
                if not await asyncio.to_thread(_owns_deployment, user, store, deployment_id):
                    await _send_error(websocket, deployment_id, "Deployment not found")
                    continue
                await relay.subscribe(deployment_id, websocket, token=user.token)
            elif kind == "unsubscribe":
                relay.unsubscribe(deployment_id, websocket)
    except WebSocketDisconnect:
        logger.info("Log socket disconnected")
    finally:
        relay.unsubscribe_all(websocket)
