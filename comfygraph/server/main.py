"""
FastAPI + Socket.IO server for the editor core.

Start with:
    python -m comfygraph.server.main

Or via uvicorn directly:
    uvicorn comfygraph.server.main:socket_app --port 3001

Configuration comes from the environment (or a .env file in the working
directory):
    COMFYUI_URL              engine base URL (http://127.0.0.1:8188)
    COMFYGRAPH_CLIENT_ID     client id sent with every prompt
    COMFYGRAPH_HOST          bind address (127.0.0.1)
    COMFYGRAPH_PORT          bind port (3001)
    COMFYGRAPH_LOG_LEVEL     logging level (INFO)
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

# Load .env before anything reads the environment.
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from comfygraph.backend.client import ComfyClient
from comfygraph.server.intents import RefreshSchemas
from comfygraph.server.mediator import Mediator
from comfygraph.server.routes.graph_routes import router
from comfygraph.server.socket_server import bridge_notifier, create_socket_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

def create_app(mediator: Optional[Mediator] = None, refresh_on_start: bool = True) -> FastAPI:
    """
    Build the HTTP app around `mediator`.  The mediator's consumer task runs
    for the lifetime of the app; the schema set is fetched once at startup.
    """
    if mediator is None:
        mediator = Mediator(backend=ComfyClient())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await mediator.start()
        if refresh_on_start:
            await mediator.dispatch(RefreshSchemas())
        yield
        await mediator.stop()

    app = FastAPI(title="comfygraph API", version="0.1.0", lifespan=lifespan)
    app.state.mediator = mediator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "engine": mediator.backend is not None}

    bridge_notifier(mediator.notifier)
    return app


app = create_app()

# ---------------------------------------------------------------------------
# Wrap with Socket.IO ASGI layer
# ---------------------------------------------------------------------------

# socket_app is the top-level ASGI app passed to uvicorn.
# Socket.IO connections are handled at the root; all other requests are
# forwarded to the inner FastAPI app.
socket_app = create_socket_app(app)

# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("COMFYGRAPH_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "comfygraph.server.main:socket_app",
        host=os.environ.get("COMFYGRAPH_HOST", "127.0.0.1"),
        port=int(os.environ.get("COMFYGRAPH_PORT", "3001")),
    )
