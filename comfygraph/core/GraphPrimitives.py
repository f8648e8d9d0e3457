from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, NamedTuple, Optional, Tuple

from .NodeField import FieldState
from .Types import LinkType, NodeType

from logging import getLogger
logger = getLogger(__name__)


class GraphIndexError(IndexError):
    """A node or link index that no longer refers to anything in the graph."""


# Links are immutable once created; only removal changes the link list.
class Link(NamedTuple):
    src_node: int
    src_slot: int
    dst_node: int
    dst_slot: int
    link_type: LinkType

    def __repr__(self):
        return f"Link({self.src_node}.{self.src_slot} -> {self.dst_node}.{self.dst_slot} : {self.link_type})"


@dataclass
class NodeInstance:
    node_type: NodeType
    position: Tuple[float, float]
    field_state: List[Tuple[str, FieldState]] = field(default_factory=list)
    # Decoded RGB pixels of the last execution output, never persisted.
    cached_output_image: Any = field(default=None, compare=False, repr=False)

    def get_field(self, name: str) -> Optional[FieldState]:
        for label, state in self.field_state:
            if label == name:
                return state
        return None


# New nodes land at this spot of the visible viewport.
NEW_NODE_ORIGIN = (20.0, 20.0)


@dataclass
class Graph:
    """
    Node instances, links between their slots and the view transform of one
    editor tab.

    Nodes are addressed by their index in `nodes`.  Nodes are never removed,
    so these indices stay valid; link indices shift whenever a link is
    removed and must not be cached across mutations.
    """
    nodes: List[NodeInstance] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)
    zoom: float = 1.0
    offset: Tuple[float, float] = (0.0, 0.0)

    # ── View transform ─────────────────────────────────────────────────────

    def set_zoom(self, zoom: float) -> None:
        self.zoom = float(zoom)

    def set_offset(self, x: float, y: float) -> None:
        self.offset = (float(x), float(y))

    # ── Nodes ──────────────────────────────────────────────────────────────

    def add_node(self, node_type: NodeType, field_state: List[Tuple[str, FieldState]]) -> int:
        x = NEW_NODE_ORIGIN[0] - self.offset[0]
        y = NEW_NODE_ORIGIN[1] - self.offset[1]
        self.nodes.append(NodeInstance(node_type, (x, y), list(field_state)))
        index = len(self.nodes) - 1
        logger.debug(f"Graph: added node {index} of type '{node_type}' at ({x}, {y})")
        return index

    def get_node(self, index: int) -> Optional[NodeInstance]:
        if index < 0 or index >= len(self.nodes):
            return None
        return self.nodes[index]

    def node(self, index: int) -> NodeInstance:
        node = self.get_node(index)
        if node is None:
            raise GraphIndexError(f"Node index {index} out of range (graph has {len(self.nodes)} nodes)")
        return node

    def get_nodes(self) -> List[NodeInstance]:
        return self.nodes

    def get_state(self, index: int) -> Optional[List[Tuple[str, FieldState]]]:
        node = self.get_node(index)
        return node.field_state if node is not None else None

    def get_field(self, index: int, name: str) -> Optional[FieldState]:
        node = self.get_node(index)
        return node.get_field(name) if node is not None else None

    def set_node_position(self, index: int, x: float, y: float) -> bool:
        node = self.get_node(index)
        if node is None:
            logger.debug(f"Graph: ignoring position of stale node index {index}")
            return False
        node.position = (float(x), float(y))
        return True

    def set_node_image(self, index: int, image: Any) -> bool:
        node = self.get_node(index)
        if node is None:
            logger.debug(f"Graph: ignoring output image for stale node index {index}")
            return False
        node.cached_output_image = image
        return True

    # ── Field edits ────────────────────────────────────────────────────────
    # No-ops returning False when the field is missing or of the wrong kind.

    def _edit_field(self, index: int, name: str, edit) -> bool:
        state = self.get_field(index, name)
        if state is None:
            logger.debug(f"Graph: no field '{name}' on node index {index}")
            return False
        return edit(state)

    def set_field_text(self, index: int, name: str, text: str) -> bool:
        return self._edit_field(index, name, lambda s: s.set_text(text))

    def set_field_int(self, index: int, name: str, value: int) -> bool:
        return self._edit_field(index, name, lambda s: s.set_int(value))

    def set_field_float(self, index: int, name: str, value: float) -> bool:
        return self._edit_field(index, name, lambda s: s.set_float(value))

    def set_field_bool(self, index: int, name: str, value: bool) -> bool:
        return self._edit_field(index, name, lambda s: s.set_bool(value))

    def set_field_option(self, index: int, name: str, option: Optional[int]) -> bool:
        return self._edit_field(index, name, lambda s: s.set_option(option))

    def increment_field(self, index: int, name: str) -> bool:
        return self._edit_field(index, name, lambda s: s.increment())

    def decrement_field(self, index: int, name: str) -> bool:
        return self._edit_field(index, name, lambda s: s.decrement())

    def randomize_field(self, index: int, name: str, rng) -> bool:
        return self._edit_field(index, name, lambda s: s.randomize(rng))

    # ── Links ──────────────────────────────────────────────────────────────

    def get_links(self) -> List[Link]:
        return self.links

    def link_at(self, dst_node: int, dst_slot: int) -> Optional[int]:
        """Index of the link feeding the given input slot, if any."""
        for i, link in enumerate(self.links):
            if link.dst_node == dst_node and link.dst_slot == dst_slot:
                return i
        return None

    def links_into(self, dst_node: int) -> List[Link]:
        return [link for link in self.links if link.dst_node == dst_node]

    def add_link(self, link: Link) -> Optional[Link]:
        """
        Append `link`.  An input slot accepts a single producer, so a link
        already ending at the same (dst_node, dst_slot) is removed first and
        returned.
        """
        evicted = None
        existing = self.link_at(link.dst_node, link.dst_slot)
        if existing is not None:
            evicted = self.links.pop(existing)
            logger.debug(f"Graph: {link!r} replaces {evicted!r}")
        self.links.append(link)
        return evicted

    def remove_link(self, index: int) -> Link:
        if index < 0 or index >= len(self.links):
            raise GraphIndexError(f"Link index {index} out of range (graph has {len(self.links)} links)")
        return self.links.pop(index)
