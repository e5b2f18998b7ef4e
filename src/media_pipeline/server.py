from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from media_pipeline.api.middleware import request_context_middleware
from media_pipeline.config import get_settings
from media_pipeline.jobs.pipeline import MediaPipeline
from media_pipeline.jobs.store import MediaStore, media_db_path
from media_pipeline.realtime.broadcaster import ProgressBroadcaster
from media_pipeline.runtime.scheduler import Scheduler
from media_pipeline.utils.log import logger
from media_pipeline.web.routes.events import router as events_router
from media_pipeline.web.routes.events import ws_router
from media_pipeline.web.routes.media import router as media_router
from media_pipeline.web.routes.system import router as system_router


def create_app(
    *,
    extractor: Any = None,
    thumbnailer: Any = None,
    analyzer: Any = None,
    access_policy: Any = None,
    max_concurrency: int | None = None,
) -> FastAPI:
    """
    Build the service. Collaborators left as None get their ffmpeg/mock defaults;
    tests pass fakes here.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        s = get_settings()
        store = MediaStore(media_db_path())
        broadcaster = ProgressBroadcaster(queue_size=int(s.subscriber_queue_size))
        pipeline = MediaPipeline(
            store=store,
            broadcaster=broadcaster,
            extractor=extractor,
            thumbnailer=thumbnailer,
            analyzer=analyzer,
        )
        sched = Scheduler(pipeline=pipeline, max_concurrency=max_concurrency)

        abandoned = await asyncio.to_thread(sched.fail_abandoned)
        if abandoned:
            logger.warning("startup_abandoned_items", count=len(abandoned))
        await sched.start()

        app.state.media_store = store
        app.state.broadcaster = broadcaster
        app.state.pipeline = pipeline
        app.state.scheduler = sched
        app.state.access_policy = access_policy
        logger.info("server_started", db=str(store.db_path), max_concurrency=sched.max_concurrency)
        try:
            yield
        finally:
            await sched.stop()
            broadcaster.close()
            logger.info("server_stopped")

    app = FastAPI(title="media-pipeline", lifespan=lifespan)

    s = get_settings()
    allow_origins = s.cors_origin_list()
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "Range", "X-Api-Key", "X-User-Id"],
            expose_headers=["Accept-Ranges", "Content-Range", "Content-Length"],
        )
    app.middleware("http")(request_context_middleware)

    app.include_router(system_router)
    app.include_router(media_router)
    app.include_router(events_router)
    app.include_router(ws_router)
    return app


app = create_app()
