"""Console WebSocket -- live console and metrics for one workload.

Frames sent to the viewer:

- binary: raw console output, forwarded as soon as it arrives;
- text: JSON events ``{"type": "console_notice" | "console_error", "message": ...}``
  and ``{"type": "server_stats", "data": {...}}``.

Frames received from the viewer (binary or text) are written verbatim to
the workload's stdin.

The bearer token comes from the ``Authorization`` header or the ``token``
query parameter.  Unknown tokens and foreign workloads are rejected before
the handshake completes, so nothing is ever sent on a denied channel.
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from loguru import logger
from starlette.websockets import WebSocketState

from shardhost.control_plane.deps import extract_token
from shardhost.control_plane.errors import SessionAuthDenied
from shardhost.control_plane.models.enums import RelayEventType
from shardhost.control_plane.relay.metrics import MetricsSnapshot
from shardhost.control_plane.settings import get_settings

router = APIRouter(prefix="/workloads", tags=["console"])

# Application-defined close codes (4000-4999).
CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403


class WebSocketViewer:
    """Adapts a Starlette ``WebSocket`` to the relay's viewer interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    async def send_output(self, data: bytes) -> None:
        await self._ws.send_bytes(data)

    async def send_notice(self, message: str) -> None:
        await self._ws.send_json({"type": RelayEventType.CONSOLE_NOTICE, "message": message})

    async def send_error(self, message: str) -> None:
        await self._ws.send_json({"type": RelayEventType.CONSOLE_ERROR, "message": message})

    async def send_metrics(self, snapshot: MetricsSnapshot) -> None:
        await self._ws.send_json({"type": RelayEventType.SERVER_STATS, "data": snapshot.model_dump()})

    async def receive_input(self) -> bytes | None:
        message = await self._ws.receive()
        if message["type"] == "websocket.disconnect":
            return None
        if message.get("bytes") is not None:
            return message["bytes"]
        return (message.get("text") or "").encode("utf-8")


@router.websocket("/{workload_id}/console")
async def console(websocket: WebSocket, workload_id: str) -> None:
    tenant_id = get_settings().resolve_tenant(extract_token(websocket))
    if tenant_id is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    relay = websocket.app.state.relay
    session_factory = websocket.app.state.db_session_factory
    if relay is None or session_factory is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    async with session_factory() as db:
        try:
            workload = await relay.authorize(db, workload_id, tenant_id)
        except SessionAuthDenied:
            await websocket.close(code=CLOSE_FORBIDDEN)
            return

    await websocket.accept()
    try:
        await relay.run(workload, tenant_id, WebSocketViewer(websocket))
    except WebSocketDisconnect:
        logger.debug("Console viewer for {} went away mid-send", workload_id)
    finally:
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
