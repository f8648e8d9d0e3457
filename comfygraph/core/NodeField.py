"""
Field model — the typed shape of one node input and its current state.

Schema variants are immutable and produced once by the node registry; a
FieldState pairs one of them with the value the user is editing.  Both read
the same closed set of kinds (see FieldKind); Unknown is the catch-all for
descriptors the registry could not make sense of.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, ClassVar, List, Optional, Tuple

from .Types import (
    DEFAULT_STEP,
    FLOAT_MAX,
    FLOAT_MIN,
    INT_MAX,
    INT_MIN,
    TY_BOOL,
    TY_FLOAT,
    TY_INT,
    TY_SELECT,
    TY_STRING,
    TY_UNKNOWN,
    FieldKind,
)


# ── Schema variants ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FieldSchema:
    kind: ClassVar[FieldKind] = FieldKind.UNKNOWN

    def type_tag(self) -> str:
        return TY_UNKNOWN

    def is_connection(self) -> bool:
        return self.kind == FieldKind.CONNECTION


@dataclass(frozen=True)
class IntInput(FieldSchema):
    default: int
    min: int = INT_MIN
    max: int = INT_MAX
    step: float = DEFAULT_STEP

    kind: ClassVar[FieldKind] = FieldKind.INT

    def type_tag(self) -> str:
        return TY_INT


@dataclass(frozen=True)
class FloatInput(FieldSchema):
    default: float
    min: float = FLOAT_MIN
    max: float = FLOAT_MAX
    step: float = DEFAULT_STEP

    kind: ClassVar[FieldKind] = FieldKind.FLOAT

    def type_tag(self) -> str:
        return TY_FLOAT


@dataclass(frozen=True)
class StringInput(FieldSchema):
    default: Optional[str] = None
    multiline: bool = False

    kind: ClassVar[FieldKind] = FieldKind.STRING

    def type_tag(self) -> str:
        return TY_STRING


@dataclass(frozen=True)
class BoolInput(FieldSchema):
    default: bool = False

    kind: ClassVar[FieldKind] = FieldKind.BOOLEAN

    def type_tag(self) -> str:
        return TY_BOOL


@dataclass(frozen=True)
class Select(FieldSchema):
    options: Tuple[str, ...] = ()
    default: Optional[str] = None

    kind: ClassVar[FieldKind] = FieldKind.SELECT

    def type_tag(self) -> str:
        return TY_SELECT


@dataclass(frozen=True)
class Connection(FieldSchema):
    link_type: str = ""

    kind: ClassVar[FieldKind] = FieldKind.CONNECTION

    def type_tag(self) -> str:
        return self.link_type


@dataclass(frozen=True)
class Unknown(FieldSchema):
    kind: ClassVar[FieldKind] = FieldKind.UNKNOWN


# ── State ────────────────────────────────────────────────────────────────────

@dataclass
class FieldState:
    """
    Current value of one non-connection field.

    `value` holds an int (INT), float (FLOAT), str (STRING), bool (BOOLEAN),
    the selected option index or None (SELECT) and always None for UNKNOWN.
    """
    schema: FieldSchema
    value: Any = None

    @classmethod
    def from_schema(cls, schema: FieldSchema) -> Optional["FieldState"]:
        """Default state for a freshly added node. Connections carry no state."""
        kind = schema.kind
        if kind == FieldKind.CONNECTION:
            return None
        if kind == FieldKind.INT:
            return cls(schema, int(schema.default))
        if kind == FieldKind.FLOAT:
            return cls(schema, float(schema.default))
        if kind == FieldKind.STRING:
            return cls(schema, schema.default or "")
        if kind == FieldKind.BOOLEAN:
            return cls(schema, bool(schema.default))
        # Selects start with nothing chosen; Unknown has nothing to hold.
        return cls(schema, None)

    @property
    def kind(self) -> FieldKind:
        return self.schema.kind

    def type_tag(self) -> str:
        return self.schema.type_tag()

    # ── Accessors ──────────────────────────────────────────────────────────

    def options(self) -> List[str]:
        if self.kind == FieldKind.SELECT:
            return list(self.schema.options)
        return []

    def option(self) -> Optional[int]:
        if self.kind != FieldKind.SELECT:
            return None
        idx = self.value
        if not isinstance(idx, int) or isinstance(idx, bool):
            return None
        if idx < 0 or idx >= len(self.schema.options):
            return None
        return idx

    def text(self) -> Optional[str]:
        if self.kind == FieldKind.STRING:
            return self.value
        if self.kind == FieldKind.SELECT:
            idx = self.option()
            return None if idx is None else self.schema.options[idx]
        return None

    def number(self) -> Optional[float]:
        if self.kind in (FieldKind.INT, FieldKind.FLOAT):
            return self.value
        return None

    def literal(self) -> Any:
        """JSON-ready value as the remote tool stores it in widget lists."""
        kind = self.kind
        if kind == FieldKind.INT:
            return int(self.value)
        if kind == FieldKind.FLOAT:
            return float(self.value)
        if kind == FieldKind.STRING:
            return self.value
        if kind == FieldKind.BOOLEAN:
            return bool(self.value)
        if kind == FieldKind.SELECT:
            return self.text()
        return None

    # ── Mutators ───────────────────────────────────────────────────────────
    # Each returns False, leaving the value alone, when the field is of the
    # wrong kind for the call or the value has the wrong type.

    def set_text(self, text: str) -> bool:
        if not isinstance(text, str):
            return False
        if self.kind == FieldKind.STRING:
            self.value = text
            return True
        if self.kind == FieldKind.SELECT:
            try:
                self.value = self.schema.options.index(text)
            except ValueError:
                self.value = None
            return True
        return False

    def set_int(self, value: int) -> bool:
        if self.kind != FieldKind.INT or not _is_finite_number(value):
            return False
        self.value = int(value)
        return True

    def set_float(self, value: float) -> bool:
        if self.kind != FieldKind.FLOAT or not _is_finite_number(value):
            return False
        self.value = float(value)
        return True

    def set_bool(self, value: bool) -> bool:
        if self.kind != FieldKind.BOOLEAN or not isinstance(value, bool):
            return False
        self.value = value
        return True

    def set_option(self, index: Optional[int]) -> bool:
        if self.kind != FieldKind.SELECT:
            return False
        if index is not None and (not isinstance(index, int) or isinstance(index, bool)):
            return False
        if index is None or index < 0 or index >= len(self.schema.options):
            self.value = None
        else:
            self.value = index
        return True

    def increment(self) -> bool:
        return self._step_by(1)

    def decrement(self) -> bool:
        return self._step_by(-1)

    def randomize(self, rng) -> bool:
        """Draw a new value within bounds; `rng` is a random.Random."""
        schema = self.schema
        if self.kind == FieldKind.INT:
            self.value = rng.randint(int(schema.min), int(schema.max))
            return True
        if self.kind == FieldKind.FLOAT:
            if not math.isfinite(schema.max - schema.min):
                return False
            self.value = rng.uniform(schema.min, schema.max)
            return True
        return False

    def _step_by(self, direction: int) -> bool:
        schema = self.schema
        if self.kind == FieldKind.INT:
            step = max(1, int(schema.step))
            self.value = int(_clamp(self.value + direction * step, schema.min, schema.max))
            return True
        if self.kind == FieldKind.FLOAT:
            self.value = float(_clamp(self.value + direction * schema.step, schema.min, schema.max))
            return True
        return False


def _clamp(value, lo, hi):
    return max(lo, min(hi, value))


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def default_field_state(fields) -> List[Tuple[str, FieldState]]:
    """Ordered default state for a mapping of field name → FieldSchema."""
    state: List[Tuple[str, FieldState]] = []
    for name, schema in fields.items():
        field_state = FieldState.from_schema(schema)
        if field_state is not None:
            state.append((name, field_state))
    return state


__all__ = [
    "FieldSchema",
    "IntInput",
    "FloatInput",
    "StringInput",
    "BoolInput",
    "Select",
    "Connection",
    "Unknown",
    "FieldState",
    "default_field_state",
]
