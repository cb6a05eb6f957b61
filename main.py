from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from cro import db
from cro.api_models import RackScaleRequest, ResourceEvent, SystemInfo
from cro.cache import StackCache
from cro.errors import (
    CroError,
    DependencyFetchError,
    InvalidPropertyError,
    ScaleViolationError,
    UnsupportedResourceError,
    UpstreamError,
    UpstreamNotFoundError,
)
from cro.reconciler import ResourceRouter
from cro.registry import StackRegistry
from cro.responder import build_response, send_response
from cro.system import ScaleValidator, SystemManager
from cro.upstream import AwsOrchestrator


def status_for(err: CroError) -> int:
    if isinstance(err, (InvalidPropertyError, UnsupportedResourceError)):
        return 400
    if isinstance(err, ScaleViolationError):
        return 409
    if isinstance(err, UpstreamNotFoundError):
        return 404
    if isinstance(err, (DependencyFetchError, UpstreamError)):
        return 502
    return 500


def build_components() -> dict[str, Any]:
    """Wire the AWS-backed components; one cache per process."""
    orchestrator = AwsOrchestrator()
    cache = StackCache(orchestrator)
    registry = StackRegistry(cache)
    return {
        "cache": cache,
        "router": ResourceRouter(orchestrator),
        "system": SystemManager(cache, ScaleValidator(registry), registry),
    }


def create_app(components: dict[str, Any] | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.init_db()
        parts = components if components is not None else build_components()
        app.state.cache = parts["cache"]
        app.state.router = parts["router"]
        app.state.system = parts["system"]
        db.log_event("INFO", "Resource orchestrator started")
        yield

    app = FastAPI(title="Custom Resource Orchestrator", lifespan=lifespan)

    # Handlers block on upstream calls, so they are plain defs (threadpool).

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.post("/resources")
    def handle_resource(event: ResourceEvent, request: Request) -> JSONResponse:
        try:
            result = request.app.state.router.handle(event)
        except CroError as e:
            db.log_event("ERROR", f"{event.action} {event.kind} failed: {e}", kind=event.kind, resource=event.logical_id)
            body = build_response(event, error=e)
            send_response(event, body)
            return JSONResponse(status_code=status_for(e), content=body)

        body = build_response(event, result=result)
        body["Outcome"] = result.outcome.value
        send_response(event, {k: v for k, v in body.items() if k != "Outcome"})
        return JSONResponse(status_code=200, content=body)

    @app.get("/system", response_model=SystemInfo)
    def get_system(request: Request) -> SystemInfo:
        try:
            return request.app.state.system.get()
        except CroError as e:
            raise HTTPException(status_code=status_for(e), detail=str(e))

    @app.put("/system", response_model=SystemInfo)
    def update_system(req: RackScaleRequest, request: Request) -> SystemInfo:
        system = request.app.state.system
        try:
            system.save(req)
            return system.get()
        except CroError as e:
            raise HTTPException(status_code=status_for(e), detail=str(e))

    @app.get("/stacks")
    def list_stacks(request: Request) -> list[dict[str, Any]]:
        try:
            return request.app.state.cache.describe_stacks()
        except CroError as e:
            raise HTTPException(status_code=status_for(e), detail=str(e))

    @app.get("/stacks/{name}")
    def get_stack(name: str, request: Request) -> dict[str, Any]:
        try:
            stacks = request.app.state.cache.describe_stack(name)
        except CroError as e:
            raise HTTPException(status_code=status_for(e), detail=str(e))
        if len(stacks) != 1:
            raise HTTPException(status_code=404, detail=f"stack not found: {name}")
        return stacks[0]

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000), resource: str | None = None) -> list[dict[str, Any]]:
        return db.latest_events(limit=limit, resource=resource)

    return app


app = create_app()
