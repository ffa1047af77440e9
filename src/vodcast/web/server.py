"""
Web server for the vodcast channel.

Provides the FastAPI application that serves the channel's query and
mutation endpoints.
"""

from __future__ import annotations

import uvicorn
from fastapi import FastAPI, Request, Response

from vodcast import __version__
from vodcast.infra.logging import get_logger
from vodcast.infra.settings import Settings, settings
from vodcast.runtime.sync_coordinator import SyncCoordinator

from .api import stream

logger = get_logger(__name__)

NO_STORE = "no-store, max-age=0"


def create_app(coordinator: SyncCoordinator | None = None, cfg: Settings | None = None) -> FastAPI:
    """Build the application around ``coordinator`` (one is built from settings if omitted)."""
    cfg = cfg or settings
    app = FastAPI(title="vodcast", version=__version__)
    app.state.coordinator = coordinator or SyncCoordinator.from_settings(cfg)

    @app.middleware("http")
    async def streaming_headers(request: Request, call_next):
        resp: Response = await call_next(request)
        # Playback state is computed per request and must never be cached
        if request.url.path.startswith("/api/stream"):
            resp.headers["Cache-Control"] = NO_STORE
            resp.headers["Pragma"] = "no-cache"
            resp.headers["Expires"] = "0"
        return resp

    app.include_router(stream.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "vodcast"}

    return app


def run_server(host: str | None = None, port: int | None = None, cfg: Settings | None = None) -> None:
    cfg = cfg or settings
    app = create_app(cfg=cfg)
    host = host or cfg.host
    port = port or cfg.port
    logger.info("server_starting", host=host, port=port, channel_id=cfg.channel_id)
    uvicorn.run(app, host=host, port=port, log_config=None)
