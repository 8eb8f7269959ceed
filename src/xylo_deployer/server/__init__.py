"""FastAPI server for xylo-deployer.

Business logic stays in `xylo_deployer.deployer.*`; routing, sessions and the WebSocket
log relay live here.
"""

from __future__ import annotations

__all__ = ["create_app"]

from xylo_deployer.server.app import create_app
