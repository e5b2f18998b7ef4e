from __future__ import annotations

import re
from collections.abc import Iterator
from pathlib import Path

from fastapi import HTTPException, Request
from fastapi.responses import Response, StreamingResponse

from media_pipeline.config import get_settings
from media_pipeline.jobs.store import MediaStore
from media_pipeline.realtime.broadcaster import ProgressBroadcaster
from media_pipeline.runtime.scheduler import Scheduler

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")

# Only these requests start a playback session; seeks and chunk fetches don't.
VIEW_RANGE = "bytes=0-"


class RangeNotSatisfiable(ValueError):
    pass


def _get_store(request: Request) -> MediaStore:
    store = getattr(request.app.state, "media_store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Media store not initialized")
    return store


def _get_scheduler(request: Request) -> Scheduler:
    sched = getattr(request.app.state, "scheduler", None)
    if sched is None:
        raise HTTPException(status_code=500, detail="Scheduler not initialized")
    return sched


def _get_broadcaster(request: Request) -> ProgressBroadcaster:
    b = getattr(request.app.state, "broadcaster", None)
    if b is None:
        raise HTTPException(status_code=500, detail="Broadcaster not initialized")
    return b


def counts_as_view(range_header: str | None) -> bool:
    return range_header is None or range_header == VIEW_RANGE


def parse_byte_range(header: str, size: int) -> tuple[int, int]:
    """
    Parse a single `bytes=start-end` range against a file of `size` bytes.

    A missing start means 0 and a missing end means the last byte; an end past the
    file is clamped. Raises RangeNotSatisfiable for anything else.
    """
    m = _RANGE_RE.match(header.strip().lower())
    if not m:
        raise RangeNotSatisfiable(header)
    start_s, end_s = m.group(1), m.group(2)
    start = int(start_s) if start_s else 0
    end = int(end_s) if end_s else size - 1
    if start >= size or end < start:
        raise RangeNotSatisfiable(header)
    return start, min(end, size - 1)


def _iter_range(p: Path, start: int, end: int, chunk_bytes: int) -> Iterator[bytes]:
    with p.open("rb") as f:
        f.seek(start)
        remaining = end - start + 1
        while remaining > 0:
            chunk = f.read(min(chunk_bytes, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


def file_range_response(path: Path, *, media_type: str, range_header: str | None) -> Response:
    """
    Serve a file whole (200) or one byte range of it (206).
    Streams from disk to avoid loading full files into memory.
    """
    p = Path(path)
    if not p.is_file():
        raise HTTPException(status_code=404, detail="Media file not found")
    size = p.stat().st_size
    chunk = max(1, int(get_settings().stream_chunk_bytes))

    if not range_header:
        headers = {"Accept-Ranges": "bytes", "Content-Length": str(size)}
        return StreamingResponse(
            _iter_range(p, 0, size - 1, chunk), media_type=media_type, headers=headers
        )

    try:
        start, end = parse_byte_range(range_header, size)
    except RangeNotSatisfiable:
        return Response(
            status_code=416,
            headers={"Content-Range": f"bytes */{size}", "Accept-Ranges": "bytes"},
        )

    headers = {
        "Accept-Ranges": "bytes",
        "Content-Range": f"bytes {start}-{end}/{size}",
        "Content-Length": str(end - start + 1),
    }
    return StreamingResponse(
        _iter_range(p, start, end, chunk),
        status_code=206,
        media_type=media_type,
        headers=headers,
    )
