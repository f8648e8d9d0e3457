"""
Editor REST routes.

All routes are mounted under /api by main.py.  Reads take a snapshot through
the mediator; every change is sent to it as an intent.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from comfygraph.compiler.prompt import compile_prompt
from comfygraph.serializers.graph_serializer import (
    serialize_link,
    serialize_project,
    serialize_schema,
    serialize_tabs,
)
from comfygraph.serializers.workflow_serializer import CodecError, encode_document
from comfygraph.server.intents import (
    AddLink,
    AddNode,
    CloseTab,
    NewTab,
    OpenFile,
    RefreshSchemas,
    RemoveLink,
    Render,
    Save,
    SaveAs,
    SelectTab,
    SetField,
    SetFieldDec,
    SetFieldInc,
    SetFieldRandom,
    SetNodePosition,
    SetOffset,
    SetZoom,
)
from comfygraph.server.mediator import Mediator

router = APIRouter()


def get_mediator(request: Request) -> Mediator:
    return request.app.state.mediator


# ── GET /tabs ─────────────────────────────────────────────────────────────────

@router.get("/tabs")
async def list_tabs(mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    with mediator.read() as state:
        return serialize_tabs(state.tabs)


# ── POST /tabs ────────────────────────────────────────────────────────────────

@router.post("/tabs", status_code=201)
async def new_tab(mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    index = await mediator.dispatch(NewTab())
    return {"index": index}


# ── POST /tabs/:index/select ──────────────────────────────────────────────────

@router.post("/tabs/{index}/select")
async def select_tab(index: int, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    if await mediator.dispatch(SelectTab(index)) is None:
        raise HTTPException(status_code=404, detail=f"Tab {index} not found")
    return {"index": index}


# ── DELETE /tabs/:index ───────────────────────────────────────────────────────

@router.delete("/tabs/{index}")
async def close_tab(index: int, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    title = await mediator.dispatch(CloseTab(index))
    if title is None:
        raise HTTPException(status_code=404, detail=f"Tab {index} not found")
    return {"closed": title}


# ── GET /node-types ───────────────────────────────────────────────────────────

@router.get("/node-types")
async def list_node_types(
    category: Optional[str] = None,
    mediator: Mediator = Depends(get_mediator),
) -> List[Dict[str, Any]]:
    with mediator.read() as state:
        schemas = sorted(state.schemas.values(), key=lambda s: s.name)
        return [
            serialize_schema(schema)
            for schema in schemas
            if category is None or schema.category == category
        ]


# ── POST /node-types/refresh ──────────────────────────────────────────────────

@router.post("/node-types/refresh")
async def refresh_node_types(mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    count = await mediator.dispatch(RefreshSchemas())
    return {"count": count}


# ── GET /graph ────────────────────────────────────────────────────────────────

@router.get("/graph")
async def get_graph(mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    with mediator.read() as state:
        return serialize_project(state.project())


# ── POST /nodes ───────────────────────────────────────────────────────────────

class CreateNodeBody(BaseModel):
    type: str


@router.post("/nodes", status_code=201)
async def create_node(body: CreateNodeBody, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    index = await mediator.dispatch(AddNode(body.type))
    if index is None:
        raise HTTPException(status_code=404, detail=f"Unknown node type '{body.type}'")
    return {"index": index, "type": body.type}


# ── PUT /nodes/:index/position ────────────────────────────────────────────────

class PositionBody(BaseModel):
    x: float
    y: float


@router.put("/nodes/{index}/position")
async def set_position(index: int, body: PositionBody, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    if not await mediator.dispatch(SetNodePosition(index, body.x, body.y)):
        raise HTTPException(status_code=404, detail=f"Node {index} not found")
    return {"ok": True}


# ── PUT /nodes/:index/fields/:name ────────────────────────────────────────────

class FieldBody(BaseModel):
    kind: Literal["text", "int", "float", "bool", "option"]
    value: Any = None


@router.put("/nodes/{index}/fields/{name}")
async def set_field(index: int, name: str, body: FieldBody, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    if not await mediator.dispatch(SetField(index, name, body.kind, body.value)):
        raise HTTPException(status_code=404, detail=f"Node {index} has no {body.kind} field '{name}'")
    return {"ok": True}


# ── POST /nodes/:index/fields/:name/:action ───────────────────────────────────

FIELD_ACTIONS = {
    "increment": SetFieldInc,
    "decrement": SetFieldDec,
    "randomize": SetFieldRandom,
}


@router.post("/nodes/{index}/fields/{name}/{action}")
async def step_field(index: int, name: str, action: str, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    intent_type = FIELD_ACTIONS.get(action)
    if intent_type is None:
        raise HTTPException(status_code=404, detail=f"Unknown field action '{action}'")
    if not await mediator.dispatch(intent_type(index, name)):
        raise HTTPException(status_code=400, detail=f"Cannot {action} field '{name}' of node {index}")
    with mediator.read() as state:
        field_state = state.project().graph.get_field(index, name)
        return {"ok": True, "value": field_state.literal() if field_state is not None else None}


# ── POST /links ───────────────────────────────────────────────────────────────

class LinkBody(BaseModel):
    srcNode: int
    srcSlot: int
    dstNode: int
    dstSlot: int
    type: Optional[str] = None


@router.post("/links", status_code=201)
async def create_link(body: LinkBody, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    added = await mediator.dispatch(AddLink(body.srcNode, body.srcSlot, body.dstNode, body.dstSlot, body.type))
    if added is None:
        raise HTTPException(status_code=400, detail="Link rejected")
    index, link = added
    return serialize_link(index, link)


# ── DELETE /links/:index ──────────────────────────────────────────────────────

@router.delete("/links/{index}")
async def delete_link(index: int, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    link = await mediator.dispatch(RemoveLink(index))
    if link is None:
        raise HTTPException(status_code=404, detail=f"Link {index} not found")
    return serialize_link(index, link)


# ── PUT /view ─────────────────────────────────────────────────────────────────

class ViewBody(BaseModel):
    zoom: Optional[float] = None
    offset: Optional[Dict[str, float]] = None


@router.put("/view")
async def set_view(body: ViewBody, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    if body.zoom is not None:
        await mediator.dispatch(SetZoom(body.zoom))
    if body.offset is not None:
        await mediator.dispatch(SetOffset(body.offset.get("x", 0.0), body.offset.get("y", 0.0)))
    with mediator.read() as state:
        graph = state.project().graph
        return {"zoom": graph.zoom, "offset": {"x": graph.offset[0], "y": graph.offset[1]}}


# ── POST /open, /save, /save-as ───────────────────────────────────────────────

class PathBody(BaseModel):
    path: str


@router.post("/open", status_code=201)
async def open_file(body: PathBody, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    try:
        index = await mediator.dispatch(OpenFile(body.path))
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail=f"No such file '{body.path}'")
    except CodecError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"index": index}


@router.post("/save")
async def save(mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    path = await mediator.dispatch(Save())
    if path is None:
        raise HTTPException(status_code=400, detail="Project has no file path, use /save-as")
    return {"path": path}


@router.post("/save-as")
async def save_as(body: PathBody, mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    try:
        path = await mediator.dispatch(SaveAs(body.path))
    except OSError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"path": path}


# ── GET /document, /prompt ────────────────────────────────────────────────────

@router.get("/document")
async def get_document(mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    with mediator.read() as state:
        project = state.project()
        return encode_document(project.graph, project.schemas).to_dict()


@router.get("/prompt")
async def get_prompt(mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    with mediator.read() as state:
        return compile_prompt(state.project(), mediator.client_id).to_dict()


# ── POST /render ──────────────────────────────────────────────────────────────

@router.post("/render")
async def render(mediator: Mediator = Depends(get_mediator)) -> Dict[str, Any]:
    ack = await mediator.dispatch(Render())
    if ack is None:
        raise HTTPException(status_code=503, detail="Engine unavailable")
    return ack
