"""
Widget value lists as the remote authoring tool stores them.

The engine's KSampler kind renders a `control_after_generate` combo right
after its `seed` widget that the engine does not declare in `object_info`.
Documents written by the authoring tool therefore carry one extra literal at
index 1 of KSampler's `widgets_values`.  This is the only such patch; other
kinds are emitted exactly as declared.
"""
from __future__ import annotations

from typing import Any, List, Sequence, Tuple

from comfygraph.core.NodeField import FieldState
from comfygraph.core.Types import NodeType

QUIRK_NODE_TYPE = "KSampler"
QUIRK_INDEX = 1
QUIRK_VALUE = "fixed"


def widgets_values(node_type: NodeType, state: Sequence[Tuple[str, FieldState]]) -> List[Any]:
    values = [field_state.literal() for _, field_state in state]
    if node_type == QUIRK_NODE_TYPE and len(values) >= QUIRK_INDEX:
        values.insert(QUIRK_INDEX, QUIRK_VALUE)
    return values


def strip_widget_quirks(node_type: NodeType, values: Sequence[Any], declared: int) -> List[Any]:
    """
    Undo `widgets_values`' insertion for a list read back from a document.

    `declared` is the number of fields the schema declares; the extra value is
    only dropped when the list is exactly one longer than that.
    """
    values = list(values)
    if node_type == QUIRK_NODE_TYPE and len(values) == declared + 1 and len(values) > QUIRK_INDEX:
        del values[QUIRK_INDEX]
    return values
