"""
Prompt compiler — flattens a Graph into the engine's execution request.

Prompt JSON format
------------------

    {
      "client_id": "f9e9494bb05849738d26b3b914e3eec2",
      "prompt": {
        "0": {"class_type": "CheckpointLoaderSimple",
              "inputs": {"ckpt_name": "sd15.safetensors"}},
        "3": {"class_type": "KSampler",
              "inputs": {"seed": 5, "model": ["0", 0], ...}}
      },
      "extra_data": {"extra_pnginfo": {"workflow": {...document...}}}   // optional
    }

Node ids are the graph's node indices as strings.  A linked input is the
pair [producer node id, producer output index]; every other input is a
literal.  Only nodes that take part in at least one link are emitted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from comfygraph.core.GraphPrimitives import Graph, Link, NodeInstance
from comfygraph.core.NodeField import FieldState
from comfygraph.core.Types import FieldKind, NodeType
from comfygraph.noderegistry.NodeRegistry import NodeSchema

from logging import getLogger
logger = getLogger(__name__)


DEFAULT_CLIENT_ID = "f9e9494bb05849738d26b3b914e3eec2"


class LinkResolutionError(LookupError):
    """A link that cannot be resolved against the current schema set."""


# ── Input values ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LinkRef:
    node_id: str
    output_index: int

    def to_json(self) -> Any:
        return [self.node_id, self.output_index]


@dataclass(frozen=True)
class Text:
    value: str

    def to_json(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Float:
    value: float

    def to_json(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Integer:
    value: int

    def to_json(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Boolean:
    value: bool

    def to_json(self) -> Any:
        return self.value


PromptInputValue = Union[LinkRef, Text, Float, Integer, Boolean]


def input_value(state: FieldState) -> Optional[PromptInputValue]:
    """Literal for one field, or None for fields the engine cannot take."""
    kind = state.kind
    if kind == FieldKind.INT:
        return Integer(int(state.value))
    if kind == FieldKind.FLOAT:
        return Float(float(state.value))
    if kind == FieldKind.STRING:
        return Text(state.value or "")
    if kind == FieldKind.SELECT:
        # Unset selection goes out as an empty string.
        return Text(state.text() or "")
    if kind == FieldKind.BOOLEAN:
        return Boolean(bool(state.value))
    return None


def value_from_json(raw: Any) -> PromptInputValue:
    if isinstance(raw, list):
        if len(raw) != 2 or not isinstance(raw[1], int) or isinstance(raw[1], bool):
            raise ValueError(f"link reference must be [node_id, output_index], got {raw!r}")
        return LinkRef(str(raw[0]), raw[1])
    if isinstance(raw, bool):
        return Boolean(raw)
    if isinstance(raw, int):
        return Integer(raw)
    if isinstance(raw, float):
        return Float(raw)
    if isinstance(raw, str):
        return Text(raw)
    raise ValueError(f"unsupported prompt input value {raw!r}")


# ── Request ───────────────────────────────────────────────────────────────────

@dataclass
class PromptNode:
    class_type: NodeType
    inputs: Dict[str, PromptInputValue] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputs": {name: value.to_json() for name, value in self.inputs.items()},
            "class_type": self.class_type,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PromptNode":
        inputs = raw.get("inputs") or {}
        return cls(
            class_type=raw["class_type"],
            inputs={name: value_from_json(value) for name, value in inputs.items()},
        )


@dataclass
class WorkflowPrompt:
    client_id: str
    prompt: Dict[str, PromptNode] = field(default_factory=dict)
    extra_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "client_id": self.client_id,
            "prompt": {node_id: node.to_dict() for node_id, node in self.prompt.items()},
        }
        if self.extra_data is not None:
            out["extra_data"] = self.extra_data
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "WorkflowPrompt":
        """Read a prompt-dialect file.  Raises ValueError / KeyError on a bad shape."""
        if not isinstance(raw, Mapping):
            raise ValueError("prompt document must be an object")
        prompt = raw.get("prompt") or {}
        if not isinstance(prompt, Mapping):
            raise ValueError("'prompt' must be an object")
        return cls(
            client_id=str(raw.get("client_id", DEFAULT_CLIENT_ID)),
            prompt={str(node_id): PromptNode.from_dict(node) for node_id, node in prompt.items()},
            extra_data=raw.get("extra_data"),
        )

    def workflow(self) -> Optional[Dict[str, Any]]:
        """The authoring document embedded in `extra_data`, if any."""
        if not self.extra_data:
            return None
        return (self.extra_data.get("extra_pnginfo") or {}).get("workflow")


# ── Compiler ──────────────────────────────────────────────────────────────────

class PromptCompiler:
    """
    Walks a Graph's links in order and materialises one PromptNode per linked
    node, memoised by node index.

    Links that cannot be resolved (stale node index, kind missing from the
    schema set, destination slot not declared) are skipped with a warning;
    the rest of the graph still compiles.
    """

    def __init__(self, schemas: Mapping[NodeType, NodeSchema]):
        self.schemas = schemas

    def compile(self, graph: Graph) -> Dict[str, PromptNode]:
        prompt: Dict[str, PromptNode] = {}
        for i, link in enumerate(graph.get_links()):
            try:
                self._apply_link(graph, link, prompt)
            except LinkResolutionError as exc:
                logger.warning(f"PromptCompiler: skipping link {i} {link!r}: {exc}")
        logger.debug(f"PromptCompiler: {len(prompt)} nodes from {len(graph.get_links())} links")
        return prompt

    def _resolve(self, graph: Graph, link: Link):
        src = graph.get_node(link.src_node)
        if src is None:
            raise LinkResolutionError(f"no source node {link.src_node}")
        dst = graph.get_node(link.dst_node)
        if dst is None:
            raise LinkResolutionError(f"no destination node {link.dst_node}")
        schema = self.schemas.get(dst.node_type)
        if schema is None:
            raise LinkResolutionError(f"kind '{dst.node_type}' is not in the schema set")
        slot = schema.input_slot(link.dst_slot)
        if slot is None:
            raise LinkResolutionError(f"'{dst.node_type}' declares no input slot {link.dst_slot}")
        return src, dst, slot[0]

    def _apply_link(self, graph: Graph, link: Link, prompt: Dict[str, PromptNode]) -> None:
        src, dst, input_name = self._resolve(graph, link)
        dst_entry = self._entry(prompt, link.dst_node, dst)
        dst_entry.inputs[input_name] = LinkRef(str(link.src_node), link.src_slot)
        self._entry(prompt, link.src_node, src)

    @staticmethod
    def _entry(prompt: Dict[str, PromptNode], index: int, node: NodeInstance) -> PromptNode:
        node_id = str(index)
        entry = prompt.get(node_id)
        if entry is None:
            entry = PromptNode(node.node_type)
            for name, state in node.field_state:
                value = input_value(state)
                if value is None:
                    logger.debug(f"PromptCompiler: node {index} field '{name}' has no literal, omitted")
                    continue
                entry.inputs[name] = value
            prompt[node_id] = entry
        return entry


def compile_prompt(project, client_id: str = DEFAULT_CLIENT_ID, workflow: Any = None) -> WorkflowPrompt:
    """
    Build the request for one project.

    Args:
        project:    a Project; its graph and schema set are read, not changed.
        client_id:  session identifier the engine tags progress events with.
        workflow:   optional authoring document (a Workflow or its dict form)
                    embedded as extra_data.extra_pnginfo.workflow, which the
                    engine writes into the metadata of the images it saves.
    """
    prompt = PromptCompiler(project.schemas).compile(project.graph)
    extra_data = None
    if workflow is not None:
        document = workflow.to_dict() if hasattr(workflow, "to_dict") else workflow
        extra_data = {"extra_pnginfo": {"workflow": document}}
    return WorkflowPrompt(client_id=client_id, prompt=prompt, extra_data=extra_data)
