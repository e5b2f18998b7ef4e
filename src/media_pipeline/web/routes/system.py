from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from media_pipeline.api.deps import Identity, require_identity
from media_pipeline.ops.metrics import REGISTRY
from media_pipeline.web.routes.common import _get_broadcaster, _get_scheduler

router = APIRouter()


@router.get("/healthz")
async def healthz():
    return {"ok": True}


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/runtime/scheduler")
async def scheduler_state(request: Request, ident: Identity = Depends(require_identity)):
    state = _get_scheduler(request).state()
    state["subscribers"] = _get_broadcaster(request).connection_count()
    return state
