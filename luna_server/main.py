# luna_server/main.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — FastAPI application entrypoint
------------------------------------------------------
This file wires everything together:

- Sets up central logging.
- Builds the shared Services (store, orchestrator, speech providers) unless
  they are injected (tests).
- Creates the FastAPI app with a lifespan that prunes stale sessions and
  old reply audio at startup and flushes the store on shutdown.
- Adds middleware (CORS for dev).
- Mounts routers:
    * /chat              (HTTP)     → text chat (web UI + messaging bot)
    * /voice             (HTTP)     → speak a line, returns audio/mpeg
    * /status/*          (HTTP)     → read-only session views
    * /ws/call           (WebSocket)→ live voice call
    * /audio/*           (static)   → synthesized reply audio
- Exposes an ASGI `app` object for uvicorn.

Typical run command (dev):

    uvicorn luna_server.main:app --host 0.0.0.0 --port 3000 --reload

"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from luna_server.core.config import settings
from luna_server.core.container import Services, build_services
from luna_server.routers.chat import router as chat_router
from luna_server.routers.status import router as status_router
from luna_server.routers.voice import router as voice_router
from luna_server.routers.ws import router as ws_router
from luna_server.utils import setup_logging, get_logger


# ---------------------------------------------------------------------------
# Global logging config
# ---------------------------------------------------------------------------
# setup_logging() honours settings.debug, so in development you get DEBUG,
# and in production you can keep it quieter.
# ---------------------------------------------------------------------------
setup_logging(debug=settings.debug)
logger = get_logger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Application factory.

    Parameters
    ----------
    services:
        Pre-built Services (tests inject fakes here). Built from `settings`
        when omitted.
    """
    services = services or build_services(settings)
    cfg = services.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pruned = services.store.prune_stale_sessions(cfg.session_max_age_s)
        removed = services.audio_store.prune()
        logger.info(
            "Luna server starting (env=%s, backend=%s, sessions=%d, pruned=%d, old_audio=%d)",
            cfg.environment,
            cfg.llm_backend,
            len(services.store.session_ids()),
            pruned,
            removed,
        )
        yield
        await asyncio.to_thread(services.store.flush)
        logger.info("Luna server stopped; sessions flushed.")

    app = FastAPI(
        title=cfg.app_name,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    # ------------------------------------------------------------------
    # CORS (the web UI may be served from another origin in dev)
    # ------------------------------------------------------------------
    if cfg.environment != "production":
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # ------------------------------------------------------------------
    # Routers (HTTP + WebSocket)
    # ------------------------------------------------------------------
    app.include_router(chat_router)
    app.include_router(voice_router)
    app.include_router(status_router)
    app.include_router(ws_router)

    # Synthesized replies: ReplyAudioStore.save() returns /audio/<name>
    services.audio_store.directory.mkdir(parents=True, exist_ok=True)
    app.mount(
        services.audio_store.url_prefix,
        StaticFiles(directory=services.audio_store.directory),
        name="audio",
    )

    # ------------------------------------------------------------------
    # Meta / health endpoints
    # ------------------------------------------------------------------

    @app.get("/", tags=["meta"])
    async def root():
        """
        Simple root endpoint so you can quickly see the server is alive.
        """
        return {
            "name": cfg.app_name,
            "environment": cfg.environment,
            "message": "Luna is awake.",
        }

    @app.get("/health", tags=["meta"])
    async def health_check():
        """
        Lightweight health check for monitoring scripts.
        """
        return {
            "status": "ok",
            "environment": cfg.environment,
            "debug": cfg.debug,
            "llm_backend": cfg.llm_backend,
            "tts_enabled": services.synthesizer is not None,
            "sessions": len(services.store.session_ids()),
        }

    logger.info("FastAPI app created (env=%s)", cfg.environment)
    return app


# ASGI app for uvicorn / gunicorn
app = create_app()


if __name__ == "__main__":
    """
    Allow `python3 -m luna_server.main` during development.

    In production you normally use:

        uvicorn luna_server.main:app --host 0.0.0.0 --port 3000
    """
    import uvicorn

    uvicorn.run(
        "luna_server.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=(settings.environment != "production"),  # auto-reload only in non-prod
    )
