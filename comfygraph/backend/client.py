"""
HTTP client for the remote image-generation engine.

Every call is blocking and has no retry.  Failures (engine unreachable,
non-2xx status, malformed JSON, undecodable image) are logged and returned
as None so callers can degrade to "feature unavailable".
"""
from __future__ import annotations

import json
import os
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Optional

import cv2
import numpy as np

from comfygraph.compiler.prompt import DEFAULT_CLIENT_ID, WorkflowPrompt

from logging import getLogger
logger = getLogger(__name__)


DEFAULT_URL = "http://127.0.0.1:8188"


def engine_url() -> str:
    return os.environ.get("COMFYUI_URL", DEFAULT_URL).rstrip("/")


def client_id() -> str:
    return os.environ.get("COMFYGRAPH_CLIENT_ID", DEFAULT_CLIENT_ID)


class ComfyClient:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or engine_url()).rstrip("/")
        self.timeout = timeout

    # ── Transport ────────────────────────────────────────────────────────────

    def _open(self, request: urllib.request.Request) -> Optional[bytes]:
        try:
            if self.timeout is None:
                response = urllib.request.urlopen(request)
            else:
                response = urllib.request.urlopen(request, timeout=self.timeout)
            with response:
                return response.read()
        except (urllib.error.URLError, OSError) as exc:
            logger.error(f"ComfyClient: {request.get_method()} {request.full_url} failed: {exc}")
            return None

    def _get_json(self, path: str) -> Optional[Any]:
        body = self._open(urllib.request.Request(f"{self.base_url}{path}"))
        if body is None:
            return None
        try:
            return json.loads(body)
        except ValueError as exc:
            logger.error(f"ComfyClient: malformed JSON from {path}: {exc}")
            return None

    # ── Endpoints ────────────────────────────────────────────────────────────

    def fetch_object_info(self) -> Optional[Dict[str, Any]]:
        """Raw per-kind capability descriptor (GET /object_info)."""
        raw = self._get_json("/object_info")
        if raw is not None and not isinstance(raw, dict):
            logger.error(f"ComfyClient: /object_info returned {type(raw).__name__}, expected an object")
            return None
        return raw

    def submit_prompt(self, prompt: WorkflowPrompt) -> Optional[Dict[str, Any]]:
        """
        Queue a compiled prompt (POST /prompt).

        Returns the engine's acknowledgment, typically
        {"prompt_id": ..., "number": ..., "node_errors": {...}}.
        """
        data = json.dumps(prompt.to_dict()).encode("utf-8")
        request = urllib.request.Request(
            f"{self.base_url}/prompt",
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        body = self._open(request)
        if body is None:
            return None
        try:
            ack = json.loads(body)
        except ValueError as exc:
            logger.error(f"ComfyClient: malformed acknowledgment: {exc}")
            return None
        logger.info(f"ComfyClient: prompt queued: {ack}")
        return ack

    def fetch_history(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        """Execution record of one prompt (GET /history/<id>), keyed by prompt id."""
        return self._get_json(f"/history/{urllib.parse.quote(prompt_id)}")

    def image_url(self, filename: str, subfolder: str = "", image_type: str = "temp") -> str:
        query = {"filename": filename, "type": image_type}
        if subfolder:
            query["subfolder"] = subfolder
        return f"{self.base_url}/view?{urllib.parse.urlencode(query)}"

    def fetch_image(self, reference: str) -> Optional[np.ndarray]:
        """Download an output image and decode it to an RGB array."""
        body = self._open(urllib.request.Request(reference))
        if body is None:
            return None
        return decode_image(body)


def decode_image(data: bytes) -> Optional[np.ndarray]:
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        logger.error(f"ComfyClient: could not decode {len(data)} bytes of image data")
        return None
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
