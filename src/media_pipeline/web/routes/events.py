from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from sse_starlette.sse import EventSourceResponse  # type: ignore

from media_pipeline.api.access import get_policy, require_media_access
from media_pipeline.api.deps import Identity, identify, require_identity
from media_pipeline.jobs.models import STAGE_ORDER, TERMINAL_STAGES
from media_pipeline.realtime.broadcaster import (
    ProgressBroadcaster,
    Subscriber,
    item_topic,
    user_topic,
)
from media_pipeline.utils.log import logger
from media_pipeline.web.routes.common import _get_broadcaster, _get_store

router = APIRouter()
ws_router = APIRouter()

# Poll interval used to notice a subscriber dropped by the broadcaster.
_IDLE_POLL_S = 1.0


_STAGE_RANK = {st.value: i for i, st in enumerate(STAGE_ORDER)}


def _is_stale(ev: dict[str, Any], floor: tuple[int, int]) -> bool:
    """True for a progress event behind `floor` (stage rank, progress)."""
    rank = _STAGE_RANK.get(str(ev.get("stage") or ""))
    if rank is not None and rank < floor[0]:
        return True
    return int(ev.get("progress") or 0) < floor[1]


async def _pump(websocket: WebSocket, conn: Subscriber) -> None:
    while True:
        try:
            ev = await asyncio.wait_for(conn.get(), timeout=_IDLE_POLL_S)
        except asyncio.TimeoutError:
            if conn.closed:
                # Dropped for falling behind; the client should reconnect and resync.
                await websocket.close(code=1013)
                return
            continue
        await websocket.send_json(ev)


async def _handle_message(
    websocket: WebSocket,
    broadcaster: ProgressBroadcaster,
    conn: Subscriber,
    ident: Identity,
    msg: Any,
) -> dict[str, Any]:
    if not isinstance(msg, dict):
        return {"type": "invalid"}
    typ = str(msg.get("type") or "")
    target = str(msg.get("id") or "").strip()
    if not target:
        return {"type": "invalid"}
    policy = get_policy(websocket.app.state)

    if typ in {"subscribe-item", "unsubscribe-item"}:
        topic = item_topic(target)
        if typ == "unsubscribe-item":
            broadcaster.unsubscribe(conn, topic)
            return {"type": "unsubscribed", "topic": topic}
        store = getattr(websocket.app.state, "media_store", None)
        item = await asyncio.to_thread(store.get, target) if store is not None else None
        if item is None:
            return {"type": "error", "id": target, "error": "not_found"}
        if not policy.can_access_media(ident, item, "read"):
            return {"type": "error", "id": target, "error": "forbidden"}
        broadcaster.subscribe(conn, topic)
        return {"type": "subscribed", "topic": topic}

    if typ == "subscribe-user":
        if not policy.can_watch_user(ident, target):
            return {"type": "error", "id": target, "error": "forbidden"}
        topic = user_topic(target)
        broadcaster.subscribe(conn, topic)
        return {"type": "subscribed", "topic": topic}

    return {"type": "invalid"}


async def _receive(
    websocket: WebSocket, broadcaster: ProgressBroadcaster, conn: Subscriber, ident: Identity
) -> None:
    while True:
        try:
            raw = await websocket.receive_text()
        except WebSocketDisconnect:
            return
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            msg = None
        reply = await _handle_message(websocket, broadcaster, conn, ident, msg)
        # Replies go through the mailbox so the pump stays the only sender.
        conn.offer(reply)


@ws_router.websocket("/ws/events")
async def ws_events(websocket: WebSocket):
    await websocket.accept()
    ident = identify(websocket.headers, websocket.query_params)
    if ident is None:
        await websocket.close(code=1008)
        return
    broadcaster: ProgressBroadcaster | None = getattr(websocket.app.state, "broadcaster", None)
    if broadcaster is None:
        await websocket.close(code=1011)
        return

    conn = broadcaster.connect()
    logger.info("ws_connected", subscriber=conn.id, user_id=ident.user_id)
    receiver = asyncio.create_task(_receive(websocket, broadcaster, conn, ident))
    sender = asyncio.create_task(_pump(websocket, conn))
    try:
        done, pending = await asyncio.wait(
            {receiver, sender}, return_when=asyncio.FIRST_COMPLETED
        )
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for t in done:
            ex = t.exception()
            if ex is not None and not isinstance(ex, WebSocketDisconnect):
                logger.warning("ws_task_failed", subscriber=conn.id, error=str(ex))
    finally:
        broadcaster.disconnect(conn)
        logger.info("ws_disconnected", subscriber=conn.id)


@router.get("/events/media/{id}")
async def sse_media(request: Request, id: str, ident: Identity = Depends(require_identity)):
    """
    Server-sent progress for one item: a snapshot first, then live events until
    the item reaches a terminal stage or the client goes away.
    """
    store = _get_store(request)
    item = await asyncio.to_thread(
        require_media_access,
        store=store,
        ident=ident,
        policy=get_policy(request.app.state),
        media_id=id,
    )
    broadcaster = _get_broadcaster(request)

    async def gen():
        conn = broadcaster.connect()
        broadcaster.subscribe(conn, item_topic(item.id))
        try:
            # Re-read after subscribing so no transition falls between snapshot and stream.
            current = await asyncio.to_thread(store.get, item.id) or item
            snapshot = current.progress_event()
            yield {"event": "progress", "data": json.dumps(snapshot)}
            if current.stage in TERMINAL_STAGES:
                return
            floor = (_STAGE_RANK.get(snapshot["stage"], 0), int(snapshot["progress"]))
            while True:
                if await request.is_disconnected() or conn.closed:
                    return
                try:
                    ev = await asyncio.wait_for(conn.get(), timeout=_IDLE_POLL_S)
                except asyncio.TimeoutError:
                    continue
                if ev.get("type") == "progress":
                    # Events queued before the snapshot read can be older than it.
                    if _is_stale(ev, floor):
                        continue
                    floor = (
                        _STAGE_RANK.get(str(ev.get("stage") or ""), floor[0]),
                        int(ev.get("progress") or 0),
                    )
                yield {"event": str(ev.get("type") or "message"), "data": json.dumps(ev)}
                if ev.get("type") in {"complete", "error"}:
                    return
        except asyncio.CancelledError:
            return
        finally:
            broadcaster.disconnect(conn)

    return EventSourceResponse(gen())
