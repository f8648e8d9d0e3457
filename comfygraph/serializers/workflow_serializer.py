"""
Document codec — the authoring tool's native workflow file.

Workflow JSON format
--------------------

    {
      "last_node_id": 2,
      "last_link_id": 3,
      "nodes": [
        {
          "id": 1, "type": "CheckpointLoaderSimple", "pos": [20.0, 20.0],
          "order": 0, "mode": 0, "properties": {},
          "inputs":  [],
          "outputs": [{"name": "MODEL", "type": "MODEL", "links": [1], "slot_index": 0}],
          "widgets_values": ["sd15.safetensors"]
        },
        ...
      ],
      "links": [[1, 1, 0, 2, 0, "MODEL"]],       // id, out node, out slot, in node, in slot, type
      "extra": {"ds": {"scale": 1.0, "offset": [0.0, 0.0]}},
      "version": 0.4
    }

Link records are flat six-element arrays, not objects; `LinkItem` is the
explicit adapter between the two.  Node ids are 1-based and assigned in
graph order; link ids are reserved per node input as the authoring tool
does it (see `Workflow.add_node`).
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from comfygraph.compiler.prompt import WorkflowPrompt
from comfygraph.compiler.widgets import strip_widget_quirks, widgets_values
from comfygraph.core.GraphPrimitives import Graph, Link, NodeInstance
from comfygraph.core.NodeField import FieldState, default_field_state
from comfygraph.core.Types import FieldKind, LinkType, NodeType
from comfygraph.noderegistry.NodeRegistry import NodeSchema

from logging import getLogger
logger = getLogger(__name__)


WORKFLOW_VERSION = 0.4


class CodecError(ValueError):
    """A persisted document that cannot be turned back into a graph."""


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _expect(condition: bool, message: str) -> None:
    if not condition:
        raise CodecError(message)


# ── Records ───────────────────────────────────────────────────────────────────

@dataclass
class LinkItem:
    link_id: int
    out_node_id: int
    out_slot: int
    in_node_id: int
    in_slot: int
    link_type: LinkType

    @classmethod
    def from_tuple(cls, seq: Sequence[Any]) -> "LinkItem":
        _expect(
            isinstance(seq, (list, tuple)) and len(seq) == 6,
            f"link record must be a six-element array, got {seq!r}",
        )
        link_id, out_node, out_slot, in_node, in_slot, link_type = seq
        _expect(
            all(_is_int(v) for v in (link_id, out_node, out_slot, in_node, in_slot)),
            f"link record ids and slots must be integers, got {seq!r}",
        )
        _expect(isinstance(link_type, str), f"link record type must be a string, got {seq!r}")
        return cls(link_id, out_node, out_slot, in_node, in_slot, link_type)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "LinkItem":
        """Object-shaped link, as newer versions of the format write them."""
        try:
            return cls.from_tuple([
                record["id"],
                record["origin_id"],
                record["origin_slot"],
                record["target_id"],
                record["target_slot"],
                record["type"],
            ])
        except KeyError as exc:
            raise CodecError(f"link record is missing {exc}") from exc

    def to_tuple(self) -> List[Any]:
        return [self.link_id, self.out_node_id, self.out_slot, self.in_node_id, self.in_slot, self.link_type]


@dataclass
class WorkflowNodeInput:
    name: str
    link_type: LinkType
    link: Optional[int] = None
    # Link id set aside for this input by Workflow.add_node; not persisted.
    reserved_link: Optional[int] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.link_type, "link": self.link}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "WorkflowNodeInput":
        link = raw.get("link")
        _expect(link is None or _is_int(link), f"input link must be an integer or null, got {link!r}")
        return cls(str(raw["name"]), str(raw["type"]), link)


@dataclass
class WorkflowNodeOutput:
    name: str
    link_type: LinkType
    links: List[int] = field(default_factory=list)
    slot_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.link_type, "links": list(self.links), "slot_index": self.slot_index}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], default_slot: int) -> "WorkflowNodeOutput":
        links = raw.get("links") or []
        _expect(isinstance(links, list), f"output links must be an array, got {links!r}")
        return cls(str(raw["name"]), str(raw["type"]), list(links), raw.get("slot_index", default_slot))


def _read_pos(raw: Any) -> Tuple[float, float]:
    # Older files store the position as {"0": x, "1": y}.
    if isinstance(raw, Mapping):
        raw = [raw.get("0"), raw.get("1")]
    _expect(
        isinstance(raw, (list, tuple)) and len(raw) == 2 and all(_is_number(v) for v in raw),
        f"node position must be [x, y], got {raw!r}",
    )
    return (float(raw[0]), float(raw[1]))


@dataclass
class WorkflowNode:
    id: int
    node_type: NodeType
    pos: Tuple[float, float] = (0.0, 0.0)
    order: int = 0
    mode: int = 0
    inputs: List[WorkflowNodeInput] = field(default_factory=list)
    outputs: List[WorkflowNodeOutput] = field(default_factory=list)
    properties: Dict[str, Any] = field(default_factory=dict)
    widgets_values: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.node_type,
            "pos": [self.pos[0], self.pos[1]],
            "order": self.order,
            "mode": self.mode,
            "inputs": [inp.to_dict() for inp in self.inputs],
            "outputs": [out.to_dict() for out in self.outputs],
            "properties": dict(self.properties),
            "widgets_values": list(self.widgets_values),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "WorkflowNode":
        _expect(isinstance(raw, Mapping), f"node must be an object, got {raw!r}")
        node_id = raw.get("id")
        _expect(_is_int(node_id), f"node id must be an integer, got {node_id!r}")
        node_type = raw.get("type")
        _expect(isinstance(node_type, str), f"node {node_id} has no type")
        widgets = raw.get("widgets_values") or []
        # Some nodes keep their widgets as an object; only list-shaped values
        # are positional.
        if not isinstance(widgets, list):
            logger.warning(f"Node {node_id} ({node_type}): non-positional widgets_values ignored")
            widgets = []
        return cls(
            id=node_id,
            node_type=node_type,
            pos=_read_pos(raw.get("pos", (0.0, 0.0))),
            order=raw.get("order", 0),
            mode=raw.get("mode", 0),
            inputs=[WorkflowNodeInput.from_dict(i) for i in raw.get("inputs") or []],
            outputs=[WorkflowNodeOutput.from_dict(o, n) for n, o in enumerate(raw.get("outputs") or [])],
            properties=dict(raw.get("properties") or {}),
            widgets_values=widgets,
        )


@dataclass
class Workflow:
    last_node_id: int = 0
    last_link_id: int = 0
    nodes: List[WorkflowNode] = field(default_factory=list)
    links: List[LinkItem] = field(default_factory=list)
    version: float = WORKFLOW_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)

    def add_node(self, node: WorkflowNode) -> int:
        """
        Append `node`, assigning it the next node id.

        One link id is reserved per declared input, counting up from the
        previous `last_link_id`, whether or not the input is ever linked.
        """
        first_link_id = self.last_link_id
        self.last_link_id += len(node.inputs)
        self.last_node_id += 1

        node.id = self.last_node_id
        for offset, inp in enumerate(node.inputs):
            inp.reserved_link = first_link_id + offset

        self.nodes.append(node)
        return node.id

    def get_node(self, node_id: int) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def link(self, out_node_id: int, in_node_id: int, out_slot: int, in_slot: int,
             link_type: Optional[LinkType] = None) -> LinkItem:
        """
        Record a link from an output to an input.

        The link takes the id reserved for the consumer input.  Inputs without
        a record (kind missing from the schema set) get a fresh id.
        """
        producer = self.get_node(out_node_id)
        consumer = self.get_node(in_node_id)
        _expect(producer is not None, f"link from unknown node {out_node_id}")
        _expect(consumer is not None, f"link into unknown node {in_node_id}")

        inp = consumer.inputs[in_slot] if 0 <= in_slot < len(consumer.inputs) else None
        if inp is not None and inp.reserved_link is not None:
            link_id = inp.reserved_link
        else:
            self.last_link_id += 1
            link_id = self.last_link_id
        if link_type is None:
            _expect(inp is not None, f"node {in_node_id} has no input slot {in_slot}")
            link_type = inp.link_type

        item = LinkItem(link_id, out_node_id, out_slot, in_node_id, in_slot, link_type)
        self.links.append(item)

        if inp is not None:
            inp.link = link_id
        if 0 <= out_slot < len(producer.outputs):
            producer.outputs[out_slot].links.append(link_id)
        return item

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_node_id": self.last_node_id,
            "last_link_id": self.last_link_id,
            "nodes": [node.to_dict() for node in self.nodes],
            "links": [item.to_tuple() for item in self.links],
            "extra": dict(self.extra),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Workflow":
        _expect(isinstance(raw, Mapping), "workflow document must be an object")
        raw_nodes = raw.get("nodes")
        raw_links = raw.get("links") or []
        _expect(isinstance(raw_nodes, list), "workflow document has no 'nodes' array")
        _expect(isinstance(raw_links, list), "'links' must be an array")
        try:
            nodes = [WorkflowNode.from_dict(n) for n in raw_nodes]
            links = [
                LinkItem.from_record(item) if isinstance(item, Mapping) else LinkItem.from_tuple(item)
                for item in raw_links
            ]
        except (AttributeError, KeyError, TypeError) as exc:
            raise CodecError(f"malformed workflow document: {exc!r}") from exc

        last_node_id = raw.get("last_node_id", max((n.id for n in nodes), default=0))
        last_link_id = raw.get("last_link_id", max((l.link_id for l in links), default=0))
        _expect(_is_int(last_node_id) and _is_int(last_link_id), "id counters must be integers")
        extra = raw.get("extra") or {}
        _expect(isinstance(extra, Mapping), "'extra' must be an object")

        return cls(
            last_node_id=last_node_id,
            last_link_id=last_link_id,
            nodes=nodes,
            links=links,
            version=raw.get("version", WORKFLOW_VERSION),
            extra=dict(extra),
        )


# ── Graph ⇄ document ──────────────────────────────────────────────────────────

def _workflow_node(node: NodeInstance, order: int, schema: Optional[NodeSchema]) -> WorkflowNode:
    inputs: List[WorkflowNodeInput] = []
    outputs: List[WorkflowNodeOutput] = []
    if schema is not None:
        inputs = [WorkflowNodeInput(name, ty) for name, ty in schema.inputs.items()]
        outputs = [WorkflowNodeOutput(name, ty, [], slot) for slot, (name, ty) in enumerate(schema.outputs)]
    else:
        logger.warning(f"encode_document: kind '{node.node_type}' is not in the schema set, slots not recorded")
    return WorkflowNode(
        id=0,
        node_type=node.node_type,
        pos=(float(node.position[0]), float(node.position[1])),
        order=order,
        inputs=inputs,
        outputs=outputs,
        widgets_values=widgets_values(node.node_type, node.field_state),
    )


def encode_document(graph: Graph, schemas: Mapping[NodeType, NodeSchema]) -> Workflow:
    """Every node and link of `graph`; node index i becomes node id i + 1."""
    workflow = Workflow()
    for index, node in enumerate(graph.nodes):
        workflow.add_node(_workflow_node(node, index, schemas.get(node.node_type)))

    for link in graph.links:
        workflow.link(link.src_node + 1, link.dst_node + 1, link.src_slot, link.dst_slot, link.link_type)

    workflow.extra["ds"] = {"scale": graph.zoom, "offset": [graph.offset[0], graph.offset[1]]}
    logger.debug(f"encode_document: {len(workflow.nodes)} nodes, {len(workflow.links)} links")
    return workflow


def _restore_field(state: FieldState, value: Any) -> bool:
    kind = state.kind
    if kind == FieldKind.INT and _is_number(value):
        return state.set_int(value)
    if kind == FieldKind.FLOAT and _is_number(value):
        return state.set_float(value)
    if kind == FieldKind.STRING and isinstance(value, str):
        return state.set_text(value)
    if kind == FieldKind.BOOLEAN and isinstance(value, bool):
        return state.set_bool(value)
    if kind == FieldKind.SELECT:
        if isinstance(value, str):
            return state.set_text(value)
        if value is None or _is_int(value):
            return state.set_option(value)
    return kind == FieldKind.UNKNOWN


def _restore_state(node: WorkflowNode, schema: Optional[NodeSchema]) -> List[Tuple[str, FieldState]]:
    if schema is None:
        logger.warning(f"decode_document: kind '{node.node_type}' is not in the schema set, widgets dropped")
        return []
    state = default_field_state(schema.fields)
    values = strip_widget_quirks(node.node_type, node.widgets_values, len(state))
    if len(values) != len(state):
        logger.warning(
            f"decode_document: node {node.id} ({node.node_type}) has {len(values)} widget values "
            f"for {len(state)} fields"
        )
    for (name, field_state), value in zip(state, values):
        if not _restore_field(field_state, value):
            logger.warning(f"decode_document: node {node.id} field '{name}' ignores value {value!r}")
    return state


def decode_document(document: Union[Workflow, Mapping[str, Any]],
                    schemas: Mapping[NodeType, NodeSchema]) -> Graph:
    """
    Rebuild a Graph from a workflow document.

    Node ids are remapped to graph indices in document order.  Widget values
    are matched to the schema's fields by position.

    Raises:
        CodecError: the document is malformed or a link names a node id that
            does not exist.  Nothing is returned in that case.
    """
    if not isinstance(document, Workflow):
        document = Workflow.from_dict(document)

    graph = Graph()
    index_of: Dict[int, int] = {}
    for node in document.nodes:
        _expect(node.id not in index_of, f"duplicate node id {node.id}")
        index_of[node.id] = len(graph.nodes)
        graph.nodes.append(NodeInstance(node.node_type, node.pos, _restore_state(node, schemas.get(node.node_type))))

    for item in document.links:
        _expect(item.out_node_id in index_of, f"link {item.link_id} from unknown node {item.out_node_id}")
        _expect(item.in_node_id in index_of, f"link {item.link_id} into unknown node {item.in_node_id}")
        graph.links.append(Link(
            index_of[item.out_node_id], item.out_slot,
            index_of[item.in_node_id], item.in_slot,
            item.link_type,
        ))

    ds = document.extra.get("ds") or {}
    _expect(isinstance(ds, Mapping), f"view transform must be an object, got {ds!r}")
    scale = ds.get("scale", 1.0)
    offset = ds.get("offset", (0.0, 0.0))
    _expect(_is_number(scale), f"view scale must be a number, got {scale!r}")
    _expect(
        isinstance(offset, (list, tuple)) and len(offset) == 2 and all(_is_number(v) for v in offset),
        f"view offset must be [x, y], got {offset!r}",
    )
    graph.set_zoom(scale)
    graph.set_offset(offset[0], offset[1])
    return graph


# ── Text and files ────────────────────────────────────────────────────────────

def dumps(workflow: Workflow, indent: Optional[int] = 2) -> str:
    return json.dumps(workflow.to_dict(), indent=indent)


def loads(text: str) -> Workflow:
    """
    Parse a document.  A prompt-dialect file is accepted when it embeds its
    authoring workflow under extra_data.extra_pnginfo.workflow.
    """
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CodecError(f"not a JSON document: {exc}") from exc

    if isinstance(raw, Mapping) and "prompt" in raw and "nodes" not in raw:
        try:
            embedded = WorkflowPrompt.from_dict(raw).workflow()
        except (KeyError, TypeError, ValueError) as exc:
            raise CodecError(f"malformed prompt document: {exc!r}") from exc
        _expect(embedded is not None, "prompt document carries no embedded workflow")
        raw = embedded
    return Workflow.from_dict(raw)


def save_document(path: Union[str, Path], graph: Graph, schemas: Mapping[NodeType, NodeSchema]) -> Workflow:
    workflow = encode_document(graph, schemas)
    path = Path(path)
    with path.open("w", encoding="utf-8") as fh:
        fh.write(dumps(workflow))
    logger.info(f"Saved workflow to {path}")
    return workflow


def load_document(path: Union[str, Path], schemas: Mapping[NodeType, NodeSchema]) -> Graph:
    path = Path(path)
    with path.open(encoding="utf-8") as fh:
        text = fh.read()
    graph = decode_document(loads(text), schemas)
    logger.info(f"Loaded workflow from {path}: {len(graph.nodes)} nodes, {len(graph.links)} links")
    return graph


__all__ = [
    "CodecError",
    "LinkItem",
    "WorkflowNodeInput",
    "WorkflowNodeOutput",
    "WorkflowNode",
    "Workflow",
    "encode_document",
    "decode_document",
    "dumps",
    "loads",
    "save_document",
    "load_document",
]
