from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from media_pipeline.api.access import get_policy, require_media_access
from media_pipeline.api.deps import Identity, require_identity
from media_pipeline.jobs.models import MediaItem, MediaStatus
from media_pipeline.jobs.pipeline import ReprocessRejected
from media_pipeline.jobs.store import MediaNotFound, register_media
from media_pipeline.ops.metrics import media_views
from media_pipeline.utils.log import logger
from media_pipeline.web.routes.common import (
    RangeNotSatisfiable,
    _get_scheduler,
    _get_store,
    counts_as_view,
    file_range_response,
    parse_byte_range,
)

router = APIRouter()

# A processing item still has a worker writing to it.
_DELETABLE = frozenset({MediaStatus.pending, MediaStatus.completed, MediaStatus.failed})


class RegisterMediaRequest(BaseModel):
    file_path: str = Field(min_length=1)
    mime_type: str = "video/mp4"
    size_bytes: int | None = Field(default=None, ge=0)
    owner_id: str = ""
    title: str = ""


async def _require_access(
    request: Request, ident: Identity, id: str, action: str = "read"
) -> MediaItem:
    return await asyncio.to_thread(
        require_media_access,
        store=_get_store(request),
        ident=ident,
        policy=get_policy(request.app.state),
        media_id=id,
        action=action,
    )


@router.get("/media/{id}")
async def stream_media(request: Request, id: str, ident: Identity = Depends(require_identity)):
    store = _get_store(request)
    item = await _require_access(request, ident, id)
    if item.status != MediaStatus.completed:
        raise HTTPException(status_code=409, detail=f"Media is {item.status.value}")
    p = Path(item.file_path)
    if not p.is_file():
        logger.warning("media_file_missing", media_id=item.id, path=str(p))
        raise HTTPException(status_code=404, detail="Media file not found")

    # Blank header means no range.
    rng = (request.headers.get("range") or "").strip() or None
    if counts_as_view(rng):
        try:
            if rng is not None:
                parse_byte_range(rng, p.stat().st_size)
        except RangeNotSatisfiable:
            pass
        else:
            await asyncio.to_thread(store.increment_views, item.id)
            media_views.inc()
    return file_range_response(p, media_type=item.mime_type, range_header=rng)


@router.get("/media/{id}/thumbnail")
async def media_thumbnail(request: Request, id: str, ident: Identity = Depends(require_identity)):
    item = await _require_access(request, ident, id)
    if not item.thumbnail_path or not Path(item.thumbnail_path).is_file():
        raise HTTPException(status_code=404, detail="Thumbnail not available")
    return FileResponse(item.thumbnail_path, media_type="image/jpeg")


@router.get("/media/{id}/info")
async def media_info(request: Request, id: str, ident: Identity = Depends(require_identity)):
    item = await _require_access(request, ident, id)
    return item.public_info()


@router.get("/api/media/{id}")
async def get_media(request: Request, id: str, ident: Identity = Depends(require_identity)):
    item = await _require_access(request, ident, id)
    return item.to_dict()


@router.post("/api/media", status_code=201)
async def create_media(
    request: Request, body: RegisterMediaRequest, ident: Identity = Depends(require_identity)
):
    store = _get_store(request)
    scheduler = _get_scheduler(request)
    p = Path(body.file_path)
    if not p.is_file():
        raise HTTPException(status_code=400, detail="file_path does not exist")
    owner = body.owner_id or ident.user_id or ""
    item = await asyncio.to_thread(
        register_media,
        store,
        file_path=p,
        mime_type=body.mime_type,
        size_bytes=body.size_bytes,
        owner_id=owner,
        title=body.title,
    )
    scheduler.submit(item.id)
    return item.to_dict()


@router.post("/api/media/{id}/reprocess", status_code=202)
async def reprocess_media(request: Request, id: str, ident: Identity = Depends(require_identity)):
    scheduler = _get_scheduler(request)
    await _require_access(request, ident, id, action="reprocess")
    try:
        item = await asyncio.to_thread(scheduler.reprocess, id)
    except MediaNotFound as ex:
        raise HTTPException(status_code=404, detail="Media not found") from ex
    except ReprocessRejected as ex:
        raise HTTPException(status_code=409, detail=str(ex)) from ex
    return {"ok": True, "id": item.id, "status": item.status.value}


@router.delete("/api/media/{id}")
async def delete_media(request: Request, id: str, ident: Identity = Depends(require_identity)):
    """
    Drop the record and its generated thumbnail. The source file belongs to
    whoever registered it and is left in place.
    """
    store = _get_store(request)
    await _require_access(request, ident, id, action="delete")
    try:
        item = await asyncio.to_thread(store.delete_if, id, expect=_DELETABLE)
    except MediaNotFound as ex:
        raise HTTPException(status_code=404, detail="Media not found") from ex
    if item is None:
        raise HTTPException(status_code=409, detail="Media is processing")
    if item.thumbnail_path:
        try:
            Path(item.thumbnail_path).unlink(missing_ok=True)
        except OSError as ex:
            logger.warning("thumbnail_delete_failed", media_id=item.id, error=str(ex))
    logger.info("media_deleted", media_id=item.id, owner_id=item.owner_id)
    return {"ok": True, "id": item.id}
