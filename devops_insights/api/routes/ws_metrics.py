"""WebSocket endpoint for real-time region updates.

Clients connect to ``/ws/metrics`` and send JSON messages (``subscribe``,
``unsubscribe``, ``get_snapshot``, ``get_history``, ``ping``). Updates are
pushed only for the regions a client has subscribed to.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/metrics")
async def ws_metrics(ws: WebSocket) -> None:
    """WebSocket endpoint for per-region metric updates."""
    runtime = getattr(ws.app.state, "runtime", None)
    if runtime is None:
        await ws.close(code=1011, reason="Gateway not available")
        return

    gateway = runtime.gateway

    await ws.accept()

    if not gateway.connect(ws):
        await ws.close(code=1008, reason="Max connections reached")
        return

    try:
        while True:
            try:
                raw = await ws.receive_text()
            except WebSocketDisconnect:
                break
            await gateway.handle_message(ws, raw)
    finally:
        gateway.disconnect(ws)
