"""
Intents — the only way to change editor state.

Every intent targets the selected tab unless it says otherwise.  Intents are
immutable values; the Mediator applies them one at a time.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from comfygraph.core.Project import Project
from comfygraph.core.Types import LinkType, NodeType


# ── Graph edits ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AddNode:
    node_type: NodeType


@dataclass(frozen=True)
class AddLink:
    src_node: int
    src_slot: int
    dst_node: int
    dst_slot: int
    # Taken from the producer's output slot when omitted.
    link_type: Optional[LinkType] = None


@dataclass(frozen=True)
class RemoveLink:
    index: int


@dataclass(frozen=True)
class SetNodePosition:
    node: int
    x: float
    y: float


FIELD_VALUE_KINDS = ("text", "int", "float", "bool", "option")


@dataclass(frozen=True)
class SetField:
    node: int
    name: str
    kind: str   # one of FIELD_VALUE_KINDS
    value: Any


@dataclass(frozen=True)
class SetFieldInc:
    node: int
    name: str


@dataclass(frozen=True)
class SetFieldDec:
    node: int
    name: str


@dataclass(frozen=True)
class SetFieldRandom:
    node: int
    name: str


@dataclass(frozen=True)
class SetZoom:
    zoom: float


@dataclass(frozen=True)
class SetOffset:
    x: float
    y: float


# ── Tabs and files ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NewTab:
    pass


@dataclass(frozen=True)
class SelectTab:
    index: int


@dataclass(frozen=True)
class CloseTab:
    index: int


@dataclass(frozen=True)
class OpenFile:
    path: str


@dataclass(frozen=True)
class Save:
    pass


@dataclass(frozen=True)
class SaveAs:
    path: str


# ── Engine ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Render:
    pass


@dataclass(frozen=True)
class SetNodeOutput:
    node: int
    reference: str
    # The project that was rendered; the selected one when omitted.
    project: Optional[Project] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class RefreshSchemas:
    pass


Intent = Union[
    AddNode, AddLink, RemoveLink, SetNodePosition,
    SetField, SetFieldInc, SetFieldDec, SetFieldRandom, SetZoom, SetOffset,
    NewTab, SelectTab, CloseTab, OpenFile, Save, SaveAs,
    Render, SetNodeOutput, RefreshSchemas,
]
