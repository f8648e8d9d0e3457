"""
Node registry — ingestion of the remote engine's capability descriptor.

The engine describes every node kind it can run as a loosely typed JSON
object (see `parse` below).  Each declared input is a short positional list
whose shape, not a type field, says what it is:

    ["MODEL"]                                   connection of slot type MODEL
    [["euler", "ddim"]]                         drop-down
    ["INT",   {"default": 20, "min": 1, ...}]   integer field
    ["FLOAT", {"default": 8.0, "step": 0.1}]    float field
    ["STRING", {"multiline": true}]             text field
    ["BOOLEAN", {"default": false}]             toggle

This module classifies those shapes into the closed FieldSchema variants and
groups them into one NodeSchema per kind.  It performs no I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from comfygraph.core.NodeField import (
    BoolInput,
    Connection,
    FieldSchema,
    FloatInput,
    IntInput,
    Select,
    StringInput,
    Unknown,
)
from comfygraph.core.Types import (
    DEFAULT_STEP,
    FLOAT_MAX,
    FLOAT_MIN,
    INT_MAX,
    INT_MIN,
    LinkType,
    NodeType,
)

from logging import getLogger
logger = getLogger(__name__)


class SchemaError(ValueError):
    """Raised when a node descriptor has a shape the registry cannot read."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


@dataclass
class NodeSchema:
    name: str
    display_name: str
    description: str = ""
    category: str = ""
    # Connection inputs only, in declaration order: name → slot type.
    inputs: Dict[str, LinkType] = field(default_factory=dict)
    outputs: List[Tuple[str, LinkType]] = field(default_factory=list)
    # Every non-connection input, in declaration order.  This order is the
    # order of the remote tool's "widgets_values" array.
    fields: Dict[str, FieldSchema] = field(default_factory=dict)
    output_node: bool = False

    def input_slot(self, index: int) -> Optional[Tuple[str, LinkType]]:
        items = list(self.inputs.items())
        if index < 0 or index >= len(items):
            return None
        return items[index]

    def output_slot(self, index: int) -> Optional[Tuple[str, LinkType]]:
        if index < 0 or index >= len(self.outputs):
            return None
        return self.outputs[index]

    def search_string(self) -> str:
        return f"{self.display_name} {self.name} {self.description} {self.category}"


# ── Field parsers ─────────────────────────────────────────────────────────────

def _require(condition: bool, path: str, message: str) -> None:
    if not condition:
        raise SchemaError(path, message)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number(params: Mapping[str, Any], key: str, fallback: Any, path: str) -> Any:
    value = params.get(key, fallback)
    _require(_is_number(value), path, f"'{key}' must be a number, got {value!r}")
    return value


def _parse_int(params: Mapping[str, Any], path: str) -> IntInput:
    _require("default" in params, path, "INT input without 'default'")
    default = _number(params, "default", None, path)
    return IntInput(
        default=int(default),
        min=int(_number(params, "min", INT_MIN, path)),
        max=int(_number(params, "max", INT_MAX, path)),
        step=_number(params, "step", DEFAULT_STEP, path),
    )


def _parse_float(params: Mapping[str, Any], path: str) -> FloatInput:
    _require("default" in params, path, "FLOAT input without 'default'")
    return FloatInput(
        default=float(_number(params, "default", None, path)),
        min=float(_number(params, "min", FLOAT_MIN, path)),
        max=float(_number(params, "max", FLOAT_MAX, path)),
        step=float(_number(params, "step", DEFAULT_STEP, path)),
    )


def _parse_string(params: Mapping[str, Any], path: str) -> StringInput:
    default = params.get("default")
    _require(default is None or isinstance(default, str), path, f"'default' must be a string, got {default!r}")
    multiline = params.get("multiline", False)
    _require(isinstance(multiline, bool), path, f"'multiline' must be a boolean, got {multiline!r}")
    return StringInput(default=default, multiline=multiline)


def _parse_bool(params: Mapping[str, Any], path: str) -> BoolInput:
    _require("default" in params, path, "BOOLEAN input without 'default'")
    default = params["default"]
    _require(isinstance(default, bool), path, f"'default' must be a boolean, got {default!r}")
    return BoolInput(default=default)


FIELD_PARSERS: Dict[str, Callable[[Mapping[str, Any], str], FieldSchema]] = {
    "INT": _parse_int,
    "FLOAT": _parse_float,
    "STRING": _parse_string,
    "BOOLEAN": _parse_bool,
}


def _select(choices: List[Any], default: Any = None) -> Select:
    options = tuple(choice for choice in choices if isinstance(choice, str))
    return Select(options=options, default=default if isinstance(default, str) else None)


def classify_input(path: str, descriptor: Any) -> FieldSchema:
    """Turn one raw input descriptor into a FieldSchema variant."""
    _require(isinstance(descriptor, list), path, f"expected a list, got {type(descriptor).__name__}")

    if len(descriptor) == 1:
        (first,) = descriptor
        if isinstance(first, list):
            return _select(first)
        if isinstance(first, str):
            return Connection(first)
        return Unknown()

    if len(descriptor) == 2:
        tag, params = descriptor
        if isinstance(tag, list):
            default = params.get("default") if isinstance(params, Mapping) else None
            return _select(tag, default)
        if not isinstance(tag, str):
            return Unknown()
        if tag == "COMBO":
            # Newer engines spell selects as ["COMBO", {"options": [...]}].
            _require(isinstance(params, Mapping) and isinstance(params.get("options"), list),
                     path, f"COMBO needs an options list, got {params!r}")
            return _select(params["options"], params.get("default"))
        parser = FIELD_PARSERS.get(tag)
        if parser is None:
            # Newer engines decorate connection inputs with an options dict.
            return Connection(tag)
        _require(isinstance(params, Mapping), path, f"{tag} parameters must be an object, got {params!r}")
        return parser(params, path)

    raise SchemaError(path, f"unexpected shape with {len(descriptor)} items")


# ── Node parser ───────────────────────────────────────────────────────────────

def parse_node(kind: str, raw: Any) -> NodeSchema:
    _require(isinstance(raw, Mapping), kind, "node descriptor must be an object")

    raw_input = raw.get("input", {})
    _require(isinstance(raw_input, Mapping), f"{kind}.input", "must be an object")

    inputs: Dict[str, LinkType] = {}
    fields: Dict[str, FieldSchema] = {}

    # Hidden inputs are filled in by the engine itself.
    for section in ("required", "optional"):
        declared = raw_input.get(section) or {}
        _require(isinstance(declared, Mapping), f"{kind}.input.{section}", "must be an object")
        for name, descriptor in declared.items():
            schema = classify_input(f"{kind}.{name}", descriptor)
            if schema.is_connection():
                inputs[name] = schema.link_type
            else:
                fields[name] = schema

    output_types = raw.get("output") or []
    output_names = raw.get("output_name") or list(output_types)
    _require(isinstance(output_types, list), f"{kind}.output", "must be a list")
    _require(isinstance(output_names, list), f"{kind}.output_name", "must be a list")
    _require(
        len(output_types) == len(output_names),
        f"{kind}.output",
        f"{len(output_names)} output names for {len(output_types)} output types",
    )

    return NodeSchema(
        name=raw.get("name", kind),
        display_name=raw.get("display_name") or raw.get("name", kind),
        description=raw.get("description", ""),
        category=raw.get("category", ""),
        inputs=inputs,
        outputs=[(str(name), str(ty)) for name, ty in zip(output_names, output_types)],
        fields=fields,
        output_node=bool(raw.get("output_node", False)),
    )


def parse(raw: Mapping[str, Any]) -> Dict[NodeType, NodeSchema]:
    """
    Parse the engine's `object_info` map into NodeSchemas keyed by kind.

    Raises:
        SchemaError: for the first descriptor with an unexpected shape.  The
            whole batch is rejected; a partial schema would silently corrupt
            later compilation.
    """
    if not isinstance(raw, Mapping):
        raise SchemaError("<root>", "capability descriptor must be an object")
    return {kind: parse_node(kind, entry) for kind, entry in raw.items()}


# ── Offline fallback ──────────────────────────────────────────────────────────

def placeholder_schemas() -> Dict[NodeType, NodeSchema]:
    """Built-in kinds that keep the editor usable without an engine."""
    schemas: Dict[NodeType, NodeSchema] = {}
    for i in range(20):
        name = f"A{i}"
        schemas[name] = NodeSchema(
            name=name,
            display_name=name,
            description="Node of type A",
            category="Dummy",
            inputs={"Text": "TXT", "Image": "IMG"},
            outputs=[("Text", "TXT"), ("Image", "IMG")],
        )
    return schemas


def load_schemas(fetch: Callable[[], Optional[Mapping[str, Any]]]) -> Dict[NodeType, NodeSchema]:
    """
    Fetch and parse the descriptor, falling back to `placeholder_schemas`
    when nothing was fetched or the descriptor could not be parsed.
    """
    raw = fetch()
    if not raw:
        logger.warning("No node descriptors available; using placeholder node set")
        return placeholder_schemas()
    try:
        return parse(raw)
    except SchemaError as exc:
        logger.error(f"Rejected node descriptors at '{exc.path}': {exc}; using placeholder node set")
        return placeholder_schemas()


__all__ = [
    "NodeSchema",
    "SchemaError",
    "classify_input",
    "parse",
    "parse_node",
    "placeholder_schemas",
    "load_schemas",
]
