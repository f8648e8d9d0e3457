"""
Execution-progress events and the history watcher.

The engine reports progress as JSON text messages of the form
{"type": "<kind>", "data": {...}}.  All events are plain dicts; the
TypedDicts below only document their shape.

The only thing the editor acts on is an output image per node, delivered as
(node index, image reference) pairs.  `parse_message` + `executed_outputs`
read them from a pushed message, `history_outputs` from the engine's
history record.  `ExecutionWatcher` polls that record for one prompt.
"""
from __future__ import annotations

import json
import os
import threading
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, TypedDict

from logging import getLogger
logger = getLogger(__name__)


class ImageOutput(TypedDict):
    filename: str
    subfolder: str
    type: str


class ExecInfo(TypedDict):
    queue_remaining: int


class StatusData(TypedDict):
    status: Dict[str, ExecInfo]


class ExecutionStartData(TypedDict):
    prompt_id: Optional[str]


class ExecutionCachedData(TypedDict):
    prompt_id: str
    nodes: List[str]


class ExecutingData(TypedDict):
    node: Optional[str]
    prompt_id: Optional[str]


class ProgressData(TypedDict):
    node: str
    value: int
    max: int
    prompt_id: str


class ExecutedData(TypedDict):
    node: str
    output: Dict[str, List[ImageOutput]]
    prompt_id: str


class ExecutionEvent(TypedDict):
    type: Literal["status", "execution_start", "execution_cached", "executing", "progress", "executed"]
    data: Dict[str, Any]


EVENT_TYPES = frozenset({"status", "execution_start", "execution_cached", "executing", "progress", "executed"})

# (filename, subfolder, type) → fetchable reference
UrlBuilder = Callable[[str, str, str], str]
NodeOutput = Tuple[int, str]


def parse_message(text: str) -> Optional[ExecutionEvent]:
    """Decode one pushed message; unknown or malformed messages give None."""
    try:
        raw = json.loads(text)
    except ValueError:
        logger.warning(f"Ignoring non-JSON event message: {text[:80]!r}")
        return None
    if not isinstance(raw, dict) or raw.get("type") not in EVENT_TYPES:
        logger.debug(f"Ignoring event message {str(raw)[:80]}")
        return None
    data = raw.get("data")
    if not isinstance(data, dict):
        logger.warning(f"Ignoring '{raw['type']}' event without data")
        return None
    return {"type": raw["type"], "data": data}


def _first_image(node_id: Any, output: Any, url_builder: UrlBuilder) -> Optional[NodeOutput]:
    try:
        index = int(node_id)
    except (TypeError, ValueError):
        logger.warning(f"Output for non-numeric node id {node_id!r} ignored")
        return None
    images = output.get("images") if isinstance(output, dict) else None
    if not images:
        return None
    first = images[0]
    if not isinstance(first, dict) or "filename" not in first:
        logger.warning(f"Malformed image record for node {node_id}: {first!r}")
        return None
    reference = url_builder(first["filename"], first.get("subfolder", ""), first.get("type", "temp"))
    return index, reference


def executed_outputs(event: ExecutionEvent, url_builder: UrlBuilder) -> List[NodeOutput]:
    if event["type"] != "executed":
        return []
    data = event["data"]
    found = _first_image(data.get("node"), data.get("output"), url_builder)
    return [found] if found is not None else []


def history_outputs(entry: Dict[str, Any], url_builder: UrlBuilder) -> List[NodeOutput]:
    """Outputs of one prompt's history record, in node-id order."""
    outputs = entry.get("outputs") or {}
    found: List[NodeOutput] = []
    for node_id, output in outputs.items():
        item = _first_image(node_id, output, url_builder)
        if item is not None:
            found.append(item)
    return sorted(found)


def _is_finished(entry: Dict[str, Any]) -> bool:
    status = entry.get("status") or {}
    if status.get("completed") or status.get("status_str") in ("success", "error"):
        return True
    # Older engines omit status and only record outputs once done.
    return not status and bool(entry.get("outputs"))


class ExecutionWatcher:
    """
    Polls the engine's history for one prompt id on a daemon thread and
    hands each finished output to `on_output(node_index, reference)`.

    Gives up with a warning after `attempts` polls.
    """

    def __init__(
        self,
        client,
        prompt_id: str,
        on_output: Callable[[int, str], None],
        interval: Optional[float] = None,
        attempts: Optional[int] = None,
    ):
        self.client = client
        self.prompt_id = prompt_id
        self.on_output = on_output
        self.interval = interval if interval is not None else float(os.environ.get("COMFYGRAPH_POLL_INTERVAL", "1.0"))
        self.attempts = attempts if attempts is not None else int(os.environ.get("COMFYGRAPH_POLL_ATTEMPTS", "600"))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "ExecutionWatcher":
        self._thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._thread.start()
        logger.debug(f"ExecutionWatcher: watching prompt {self.prompt_id}")
        return self

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll_once(self) -> bool:
        """One history poll.  True once the prompt has finished."""
        history = self.client.fetch_history(self.prompt_id)
        entry = (history or {}).get(self.prompt_id)
        if not entry or not _is_finished(entry):
            return False
        for node, reference in history_outputs(entry, self.client.image_url):
            logger.info(f"ExecutionWatcher: node {node} produced {reference}")
            self.on_output(node, reference)
        return True

    def _poll_loop(self) -> None:
        for _ in range(self.attempts):
            if self._stop.is_set():
                return
            if self.poll_once():
                return
            self._stop.wait(self.interval)
        logger.warning(f"ExecutionWatcher: prompt {self.prompt_id} not finished after {self.attempts} polls")
