from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eventnexus.api.routers import ingest, recommendations, users
from eventnexus.config import load_settings
from eventnexus.infra.database import resolve_engine
from eventnexus.jobs.ingest_events import build_registry

logger = logging.getLogger(__name__)


def create_app(engine=None, registry=None) -> FastAPI:
    settings = load_settings()
    app = FastAPI(title="EventNexus API", version="0.1.0")
    if engine is None and os.getenv("DATABASE_URL"):
        engine = resolve_engine(database_url=os.getenv("DATABASE_URL"))
    app.state.db_engine = engine
    app.state.plugin_registry = registry if registry is not None else build_registry(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValueError)
    async def _bad_request(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(ingest.router, prefix="/api")
    app.include_router(recommendations.router, prefix="/api")
    app.include_router(users.router, prefix="/api")
    return app


app = create_app()
