"""
Socket.IO server — pushes editor change notifications to connected UIs.

Uses python-socketio in ASGI mode so it can wrap FastAPI.
`create_socket_app(fastapi_app)` returns the composite ASGI application to
pass to uvicorn.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict

import socketio

from .notifier import ChangeNotifier

from logging import getLogger
logger = getLogger(__name__)

GRAPH_EVENT = "graph"

# ---------------------------------------------------------------------------
# Socket.IO instance (async, ASGI mode)
# ---------------------------------------------------------------------------

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*",
    logger=False,
    engineio_logger=False,
)


# ---------------------------------------------------------------------------
# Change fan-out: wire a ChangeNotifier → Socket.IO emit
# ---------------------------------------------------------------------------

def _on_change(event: Dict[str, Any]) -> None:
    """
    Called synchronously by ChangeNotifier.fire() on the mediator's loop.
    We schedule an async emit on that loop.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug(f"No running loop, '{event.get('type')}' not pushed")
        return
    loop.create_task(sio.emit(GRAPH_EVENT, event))


def bridge_notifier(notifier: ChangeNotifier) -> None:
    notifier.on_change(_on_change)


# ---------------------------------------------------------------------------
# Socket.IO lifecycle events
# ---------------------------------------------------------------------------

@sio.event
async def connect(sid: str, environ: dict) -> None:
    logger.debug(f"Socket client {sid} connected")


@sio.event
async def disconnect(sid: str) -> None:
    logger.debug(f"Socket client {sid} disconnected")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_socket_app(fastapi_app: Any) -> socketio.ASGIApp:
    """Wrap *fastapi_app* inside a Socket.IO ASGI application."""
    return socketio.ASGIApp(sio, other_asgi_app=fastapi_app)
