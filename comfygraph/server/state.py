"""
EditorState — everything the editor holds between intents: the open tabs and
the schema set they are edited against.

Only the Mediator mutates an EditorState; everyone else reads it through
`Mediator.read()`.
"""
from __future__ import annotations

from typing import Dict, Optional

from comfygraph.core.Project import Project, Tabs
from comfygraph.core.Types import NodeType
from comfygraph.noderegistry.NodeRegistry import NodeSchema, placeholder_schemas


class EditorState:
    def __init__(self, schemas: Optional[Dict[NodeType, NodeSchema]] = None) -> None:
        self.schemas: Dict[NodeType, NodeSchema] = dict(schemas) if schemas else placeholder_schemas()
        self.tabs = Tabs(self.schemas)

    def project(self) -> Project:
        return self.tabs.selected_project()

    def set_schemas(self, schemas: Dict[NodeType, NodeSchema]) -> None:
        self.schemas = dict(schemas)
        self.tabs.set_schemas(self.schemas)
