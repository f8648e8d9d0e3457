"""
ChangeNotifier — fan-out of editor change notifications.

The mediator fires one notification after every applied intent; listeners
(the Socket.IO bridge, tests, loggers) receive a plain dict describing what
changed.  A failing listener is logged and does not stop the others.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, List

from logging import getLogger
logger = getLogger(__name__)


class ChangeNotifier:
    def __init__(self) -> None:
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def on_change(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register a callback that receives every change notification."""
        self._listeners.append(callback)

    def off_change(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ------------------------------------------------------------------
    # Emit
    # ------------------------------------------------------------------

    def fire(self, payload: Dict[str, Any]) -> None:
        """Stamp the payload with a millisecond timestamp and broadcast it."""
        if "ts" not in payload:
            payload["ts"] = _now_ms()
        for cb in list(self._listeners):
            try:
                cb(payload)
            except Exception:
                logger.exception(f"Change listener {cb!r} failed on {payload.get('type')}")


def _now_ms() -> int:
    return int(time.time() * 1000)
