"""
Mediator — the single writer of editor state.

One asyncio task drains a queue of intents and applies them in order.
Producers either await the outcome (`dispatch`, used by the HTTP routes) or
fire and forget from any thread (`post`, used by the execution watcher).
Readers take a consistent snapshot through `read()`.

State is only touched under the write side of the RWLock, and the lock is
never held across an `await`: blocking engine and file I/O runs in a worker
thread between a read phase and a write phase of the same intent.
"""
from __future__ import annotations

import asyncio
import random
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from comfygraph.backend import client as engine
from comfygraph.backend.events import ExecutionWatcher
from comfygraph.compiler.prompt import compile_prompt
from comfygraph.core.GraphPrimitives import GraphIndexError, Link
from comfygraph.core.Project import LinkTypeError, Project, UnknownNodeTypeError
from comfygraph.noderegistry.NodeRegistry import load_schemas
from comfygraph.serializers.graph_serializer import serialize_project
from comfygraph.serializers.workflow_serializer import (
    decode_document,
    dumps,
    encode_document,
    loads,
)

from .intents import (
    AddLink,
    AddNode,
    CloseTab,
    NewTab,
    OpenFile,
    RefreshSchemas,
    RemoveLink,
    Render,
    Save,
    SaveAs,
    SelectTab,
    SetField,
    SetFieldDec,
    SetFieldInc,
    SetFieldRandom,
    SetNodeOutput,
    SetNodePosition,
    SetOffset,
    SetZoom,
)
from .notifier import ChangeNotifier
from .rwlock import RWLock
from .state import EditorState

from logging import getLogger
logger = getLogger(__name__)


# Stale indices and mismatched links are dropped, never fatal.
RECOVERABLE = (GraphIndexError, LinkTypeError, UnknownNodeTypeError)

_STOP = object()


def _read_file(path: str) -> str:
    with open(path, encoding="utf-8") as fh:
        return fh.read()


def _write_file(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(text)


class Mediator:
    def __init__(
        self,
        state: Optional[EditorState] = None,
        backend: Any = None,
        notifier: Optional[ChangeNotifier] = None,
        rng: Optional[random.Random] = None,
        client_id: Optional[str] = None,
        watch_executions: bool = True,
    ) -> None:
        self.state = state if state is not None else EditorState()
        # A ComfyClient, or None to run offline.
        self.backend = backend
        self.notifier = notifier if notifier is not None else ChangeNotifier()
        self.rng = rng if rng is not None else random.Random()
        self.client_id = client_id or engine.client_id()
        self.watch_executions = watch_executions
        self.lock = RWLock()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._watchers: list = []

        self._handlers: Dict[type, Callable] = {
            AddNode: self._add_node,
            AddLink: self._add_link,
            RemoveLink: self._remove_link,
            SetNodePosition: self._set_node_position,
            SetField: self._set_field,
            SetFieldInc: self._increment_field,
            SetFieldDec: self._decrement_field,
            SetFieldRandom: self._randomize_field,
            SetZoom: self._set_zoom,
            SetOffset: self._set_offset,
            NewTab: self._new_tab,
            SelectTab: self._select_tab,
            CloseTab: self._close_tab,
            OpenFile: self._open_file,
            Save: self._save,
            SaveAs: self._save_as,
            Render: self._render,
            SetNodeOutput: self._set_node_output,
            RefreshSchemas: self._refresh_schemas,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._run())
        logger.debug("Mediator: started")

    async def stop(self) -> None:
        if self._task is None:
            return
        for watcher in self._watchers:
            watcher.stop()
        self._watchers.clear()
        await self._queue.put(_STOP)
        await self._task
        self._task = None
        self._queue = None
        self._loop = None
        logger.debug("Mediator: stopped")

    # ── Producers ────────────────────────────────────────────────────────────

    async def dispatch(self, intent: Any) -> Any:
        """Enqueue `intent` and wait for its result (or its exception)."""
        if self._queue is None:
            raise RuntimeError("Mediator is not running")
        future = self._loop.create_future()
        await self._queue.put((intent, future))
        return await future

    def post(self, intent: Any) -> None:
        """Enqueue `intent` from any thread without waiting for it."""
        if self._loop is None or self._queue is None:
            raise RuntimeError("Mediator is not running")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (intent, None))

    # ── Readers ──────────────────────────────────────────────────────────────

    @contextmanager
    def read(self) -> Iterator[EditorState]:
        with self.lock.read():
            yield self.state

    # ── Consumer loop ────────────────────────────────────────────────────────

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            intent, future = item
            try:
                result = await self._apply(intent)
            except Exception as exc:
                if future is not None:
                    if not future.cancelled():
                        future.set_exception(exc)
                else:
                    logger.exception(f"Mediator: posted intent {intent!r} failed")
                continue
            if future is not None and not future.cancelled():
                future.set_result(result)

    async def _apply(self, intent: Any) -> Any:
        handler = self._handlers.get(type(intent))
        if handler is None:
            raise TypeError(f"Unsupported intent {intent!r}")
        try:
            result = handler(intent)
            if asyncio.iscoroutine(result):
                result = await result
        except RECOVERABLE as exc:
            logger.warning(f"Mediator: {intent!r} dropped: {exc}")
            return None
        logger.debug(f"Mediator: applied {intent!r}")
        self._notify(intent)
        return result

    def _notify(self, intent: Any) -> None:
        with self.lock.read():
            payload = {
                "type": type(intent).__name__,
                "tab": self.state.tabs.selected,
                "tabs": self.state.tabs.tab_titles(),
                "project": serialize_project(self.state.project()),
            }
        self.notifier.fire(payload)

    @contextmanager
    def _write(self) -> Iterator[Project]:
        with self.lock.write():
            yield self.state.project()

    # ── Graph edits ──────────────────────────────────────────────────────────

    def _add_node(self, intent: AddNode) -> int:
        with self._write() as project:
            return project.add_node(intent.node_type)

    def _add_link(self, intent: AddLink) -> Tuple[int, Link]:
        """Returns the new link and its index, read before the lock is released."""
        with self._write() as project:
            if intent.link_type is None:
                link = project.connect(intent.src_node, intent.src_slot, intent.dst_node, intent.dst_slot)
            else:
                link = Link(intent.src_node, intent.src_slot, intent.dst_node, intent.dst_slot, intent.link_type)
                project.add_link(link)
            return len(project.graph.links) - 1, link

    def _remove_link(self, intent: RemoveLink) -> Link:
        with self._write() as project:
            return project.remove_link(intent.index)

    def _set_node_position(self, intent: SetNodePosition) -> bool:
        with self._write() as project:
            return project.graph.set_node_position(intent.node, intent.x, intent.y)

    def _set_field(self, intent: SetField) -> bool:
        with self._write() as project:
            graph = project.graph
            setter = {
                "text": graph.set_field_text,
                "int": graph.set_field_int,
                "float": graph.set_field_float,
                "bool": graph.set_field_bool,
                "option": graph.set_field_option,
            }.get(intent.kind)
            if setter is None:
                raise ValueError(f"Unknown field value kind '{intent.kind}'")
            return setter(intent.node, intent.name, intent.value)

    def _increment_field(self, intent: SetFieldInc) -> bool:
        with self._write() as project:
            return project.graph.increment_field(intent.node, intent.name)

    def _decrement_field(self, intent: SetFieldDec) -> bool:
        with self._write() as project:
            return project.graph.decrement_field(intent.node, intent.name)

    def _randomize_field(self, intent: SetFieldRandom) -> bool:
        with self._write() as project:
            return project.graph.randomize_field(intent.node, intent.name, self.rng)

    def _set_zoom(self, intent: SetZoom) -> bool:
        with self._write() as project:
            project.graph.set_zoom(intent.zoom)
            return True

    def _set_offset(self, intent: SetOffset) -> bool:
        with self._write() as project:
            project.graph.set_offset(intent.x, intent.y)
            return True

    # ── Tabs and files ───────────────────────────────────────────────────────

    def _new_tab(self, intent: NewTab) -> int:
        with self.lock.write():
            return self.state.tabs.new_tab()

    def _select_tab(self, intent: SelectTab) -> int:
        with self.lock.write():
            self.state.tabs.select_tab(intent.index)
            return intent.index

    def _close_tab(self, intent: CloseTab) -> str:
        with self.lock.write():
            return self.state.tabs.close_tab(intent.index).title()

    async def _open_file(self, intent: OpenFile) -> int:
        """Raises CodecError / OSError; no tab is opened in that case."""
        schemas = self.state.schemas
        text = await asyncio.to_thread(_read_file, intent.path)
        graph = decode_document(loads(text), schemas)
        with self.lock.write():
            index = self.state.tabs.new_tab(Project(schemas, graph, intent.path))
        logger.info(f"Mediator: opened {intent.path} in tab {index}")
        return index

    async def _write_document(self, path: str) -> str:
        with self.lock.read():
            project = self.state.project()
            text = dumps(encode_document(project.graph, project.schemas))
        await asyncio.to_thread(_write_file, path, text)
        with self.lock.write():
            project.file_path = path
        logger.info(f"Mediator: saved '{path}'")
        return path

    async def _save(self, intent: Save) -> Optional[str]:
        path = self.state.project().file_path
        if path is None:
            logger.warning("Mediator: untitled project needs SaveAs")
            return None
        return await self._write_document(path)

    async def _save_as(self, intent: SaveAs) -> str:
        return await self._write_document(intent.path)

    # ── Engine ───────────────────────────────────────────────────────────────

    async def _render(self, intent: Render) -> Optional[Dict[str, Any]]:
        with self.lock.read():
            project = self.state.project()
            workflow = encode_document(project.graph, project.schemas)
            prompt = compile_prompt(project, self.client_id, workflow)
        if self.backend is None:
            logger.warning("Mediator: no engine configured, render skipped")
            return None
        ack = await asyncio.to_thread(self.backend.submit_prompt, prompt)
        if ack and ack.get("prompt_id") and self.watch_executions:
            watcher = ExecutionWatcher(
                self.backend,
                ack["prompt_id"],
                lambda node, reference: self.post(SetNodeOutput(node, reference, project)),
            )
            self._watchers = [w for w in self._watchers if w.is_alive()]
            self._watchers.append(watcher.start())
        return ack

    async def _set_node_output(self, intent: SetNodeOutput) -> bool:
        if self.backend is None:
            return False
        image = await asyncio.to_thread(self.backend.fetch_image, intent.reference)
        if image is None:
            return False
        with self.lock.write():
            project = intent.project if intent.project is not None else self.state.project()
            if not any(p is project for p in self.state.tabs.projects):
                logger.info(f"Mediator: output for node {intent.node} dropped, its tab is closed")
                return False
            return project.graph.set_node_image(intent.node, image)

    async def _refresh_schemas(self, intent: RefreshSchemas) -> int:
        fetch = self.backend.fetch_object_info if self.backend is not None else (lambda: None)
        schemas = await asyncio.to_thread(load_schemas, fetch)
        with self.lock.write():
            self.state.set_schemas(schemas)
        logger.info(f"Mediator: {len(schemas)} node kinds available")
        return len(schemas)
