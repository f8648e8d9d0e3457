from __future__ import annotations

from typing import Callable, Dict, List, Optional

from comfygraph.noderegistry.NodeRegistry import NodeSchema

from .GraphPrimitives import Graph, GraphIndexError, Link
from .NodeField import default_field_state
from .Types import LinkType, NodeType

from logging import getLogger
logger = getLogger(__name__)


class UnknownNodeTypeError(KeyError):
    """The node kind is not declared by the current schema set."""


class LinkTypeError(ValueError):
    """A link whose type differs from the declared type of one of its slots."""


UNTITLED = "Untitled"


class Project:
    """
    One editor tab: a Graph, the schema set it is edited against, and the file
    it was loaded from or last saved to.

    Schema-aware mutations live here; everything that only needs the graph
    itself is reached through `project.graph`.
    """

    def __init__(
        self,
        schemas: Optional[Dict[NodeType, NodeSchema]] = None,
        graph: Optional[Graph] = None,
        file_path: Optional[str] = None,
    ):
        self.schemas: Dict[NodeType, NodeSchema] = dict(schemas or {})
        self.graph: Graph = graph if graph is not None else Graph()
        self.file_path: Optional[str] = file_path
        self._subscribers: List[Callable[["Project"], None]] = []

    # ── Schemas ─────────────────────────────────────────────────────────────

    def set_schemas(self, schemas: Dict[NodeType, NodeSchema]) -> None:
        self.schemas = dict(schemas)
        logger.debug(f"Project '{self.title()}': schema set replaced ({len(self.schemas)} kinds)")
        self.notify()

    def get_schema(self, node_type: NodeType) -> Optional[NodeSchema]:
        return self.schemas.get(node_type)

    def title(self) -> str:
        return self.file_path or UNTITLED

    # ── Observers ───────────────────────────────────────────────────────────

    def subscribe(self, callback: Callable[["Project"], None]) -> None:
        self._subscribers.append(callback)

    def notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self)

    # ── Mutations ───────────────────────────────────────────────────────────

    def add_node(self, node_type: NodeType) -> int:
        schema = self.schemas.get(node_type)
        if schema is None:
            raise UnknownNodeTypeError(node_type)
        index = self.graph.add_node(node_type, default_field_state(schema.fields))
        self.notify()
        return index

    def _slot_types(self, link: Link):
        src = self.graph.node(link.src_node)
        dst = self.graph.node(link.dst_node)

        src_schema = self.schemas.get(src.node_type)
        dst_schema = self.schemas.get(dst.node_type)
        if src_schema is None:
            raise UnknownNodeTypeError(src.node_type)
        if dst_schema is None:
            raise UnknownNodeTypeError(dst.node_type)

        output = src_schema.output_slot(link.src_slot)
        if output is None:
            raise GraphIndexError(f"'{src.node_type}' has no output slot {link.src_slot}")
        inp = dst_schema.input_slot(link.dst_slot)
        if inp is None:
            raise GraphIndexError(f"'{dst.node_type}' has no input slot {link.dst_slot}")
        return output[1], inp[1]

    def add_link(self, link: Link) -> Optional[Link]:
        """
        Validate `link` against the declared slot types and append it.

        Returns the link it displaced from the same input slot, if any.

        Raises:
            GraphIndexError: a node index or slot index does not exist.
            UnknownNodeTypeError: an endpoint's kind is not in the schema set.
            LinkTypeError: `link.link_type` differs from either slot's type.
        """
        out_type, in_type = self._slot_types(link)
        if link.link_type != out_type or link.link_type != in_type:
            raise LinkTypeError(
                f"{link!r}: output slot is '{out_type}', input slot is '{in_type}'"
            )
        evicted = self.graph.add_link(link)
        self.notify()
        return evicted

    def connect(self, src_node: int, src_slot: int, dst_node: int, dst_slot: int) -> Link:
        """Link two slots, taking the link type from the producer's output."""
        src = self.graph.node(src_node)
        schema = self.schemas.get(src.node_type)
        if schema is None:
            raise UnknownNodeTypeError(src.node_type)
        output = schema.output_slot(src_slot)
        if output is None:
            raise GraphIndexError(f"'{src.node_type}' has no output slot {src_slot}")
        link = Link(src_node, src_slot, dst_node, dst_slot, output[1])
        self.add_link(link)
        return link

    def remove_link(self, index: int) -> Link:
        link = self.graph.remove_link(index)
        self.notify()
        return link

    def compatible_inputs(self, link_type: LinkType) -> List[NodeType]:
        """Kinds with at least one input slot accepting `link_type`."""
        return [name for name, schema in self.schemas.items() if link_type in schema.inputs.values()]


class Tabs:
    """Open projects, one of which is selected.  There is always at least one."""

    def __init__(self, schemas: Optional[Dict[NodeType, NodeSchema]] = None):
        self.schemas: Dict[NodeType, NodeSchema] = dict(schemas or {})
        self.projects: List[Project] = [Project(self.schemas)]
        self.selected: int = 0

    def new_tab(self, project: Optional[Project] = None) -> int:
        if project is None:
            project = Project(self.schemas)
        self.projects.append(project)
        self.selected = len(self.projects) - 1
        logger.debug(f"Tabs: opened tab {self.selected} '{project.title()}'")
        return self.selected

    def select_tab(self, index: int) -> None:
        if index < 0 or index >= len(self.projects):
            raise GraphIndexError(f"Tab index {index} out of range ({len(self.projects)} tabs)")
        self.selected = index

    def close_tab(self, index: int) -> Project:
        if index < 0 or index >= len(self.projects):
            raise GraphIndexError(f"Tab index {index} out of range ({len(self.projects)} tabs)")
        closed = self.projects.pop(index)
        if not self.projects:
            self.projects.append(Project(self.schemas))
        if self.selected >= index and self.selected > 0:
            self.selected -= 1
        logger.debug(f"Tabs: closed tab {index} '{closed.title()}'")
        return closed

    def selected_project(self) -> Project:
        return self.projects[self.selected]

    def tab_titles(self) -> List[str]:
        return [project.title() for project in self.projects]

    def set_schemas(self, schemas: Dict[NodeType, NodeSchema]) -> None:
        self.schemas = dict(schemas)
        for project in self.projects:
            project.set_schemas(self.schemas)
