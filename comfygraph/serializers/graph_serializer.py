"""
Graph serializer — the JSON wire shape the presentation layer renders.

Distinct from the workflow document: this carries everything a UI needs to
draw one tab (widget type tags, option lists, connected flags, whether an
output image is cached) and nothing it needs to persist.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Set, Tuple

from comfygraph.core.GraphPrimitives import Link, NodeInstance
from comfygraph.core.NodeField import FieldState
from comfygraph.core.Project import Project, Tabs
from comfygraph.noderegistry.NodeRegistry import NodeSchema

# ── Wire shapes (plain dicts for easy JSON serialisation) ─────────────────────
# SerializedField keys: name, kind, typeTag, value, text, options
# SerializedSlot keys:  name, type, connected (inputs only)
# SerializedNode keys:  index, type, displayName, position, inputs, outputs,
#                       fields, hasImage
# SerializedLink keys:  index, srcNode, srcSlot, dstNode, dstSlot, type
# SerializedProject keys: title, filePath, zoom, offset, nodes, links


def _serialize_field(name: str, state: FieldState) -> Dict[str, Any]:
    return {
        "name": name,
        "kind": state.kind.name,
        "typeTag": state.type_tag(),
        "value": state.literal(),
        "text": state.text(),
        "options": state.options(),
    }


def _serialize_node(
    index: int,
    node: NodeInstance,
    schema: Optional[NodeSchema],
    connected_inputs: Set[Tuple[int, int]],
) -> Dict[str, Any]:
    inputs = list(schema.inputs.items()) if schema is not None else []
    outputs = schema.outputs if schema is not None else []
    return {
        "index": index,
        "type": node.node_type,
        "displayName": schema.display_name if schema is not None else node.node_type,
        "position": {"x": node.position[0], "y": node.position[1]},
        "inputs": [
            {"name": name, "type": ty, "connected": (index, slot) in connected_inputs}
            for slot, (name, ty) in enumerate(inputs)
        ],
        "outputs": [{"name": name, "type": ty} for name, ty in outputs],
        "fields": [_serialize_field(name, state) for name, state in node.field_state],
        "hasImage": node.cached_output_image is not None,
    }


def serialize_link(index: int, link: Link) -> Dict[str, Any]:
    return {
        "index": index,
        "srcNode": link.src_node,
        "srcSlot": link.src_slot,
        "dstNode": link.dst_node,
        "dstSlot": link.dst_slot,
        "type": link.link_type,
    }


def serialize_schema(schema: NodeSchema) -> Dict[str, Any]:
    return {
        "name": schema.name,
        "displayName": schema.display_name,
        "description": schema.description,
        "category": schema.category,
        "outputNode": schema.output_node,
        "inputs": [{"name": name, "type": ty} for name, ty in schema.inputs.items()],
        "outputs": [{"name": name, "type": ty} for name, ty in schema.outputs],
        "fields": [{"name": name, "typeTag": f.type_tag()} for name, f in schema.fields.items()],
        "searchString": schema.search_string(),
    }


# ── Public API ─────────────────────────────────────────────────────────────────

def serialize_project(project: Project) -> Dict[str, Any]:
    graph = project.graph
    connected_inputs = {(link.dst_node, link.dst_slot) for link in graph.links}
    nodes: List[Dict[str, Any]] = [
        _serialize_node(i, node, project.get_schema(node.node_type), connected_inputs)
        for i, node in enumerate(graph.nodes)
    ]
    return {
        "title": project.title(),
        "filePath": project.file_path,
        "zoom": graph.zoom,
        "offset": {"x": graph.offset[0], "y": graph.offset[1]},
        "nodes": nodes,
        "links": [serialize_link(i, link) for i, link in enumerate(graph.links)],
    }


def serialize_tabs(tabs: Tabs) -> Dict[str, Any]:
    return {"selected": tabs.selected, "titles": tabs.tab_titles()}
