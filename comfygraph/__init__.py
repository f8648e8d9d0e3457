"""
comfygraph — editor core for node graphs executed by a ComfyUI engine.

    core/           field model, graph store, projects and tabs
    noderegistry/   ingestion of the engine's object_info descriptor
    compiler/       graph → execution request
    serializers/    workflow documents and the UI wire shape
    backend/        HTTP client and execution-progress events
    server/         mediator, REST routes and Socket.IO push
"""

__version__ = "0.1.0"
