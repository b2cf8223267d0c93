from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gatescan.api.routes import router
from gatescan.core.config import settings
from gatescan.core.logging import configure_logging
from gatescan.db.init_db import close_db, init_db
from gatescan.ocr.factory import get_ocr_engine
from gatescan.ocr.pool import EnginePool


def create_app(pool: EnginePool | None = None) -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Gate Scan", version="0.1.0")
    app.include_router(router)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=600,
    )
    app.state.engine_pool = pool or EnginePool.from_settings(settings, get_ocr_engine)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to the Gate Scan ID card API",
            "docs": "/docs",
            "health": "/health",
        }

    @app.on_event("startup")
    async def _startup() -> None:
        logging.getLogger(__name__).info("startup")
        await init_db()
        await app.state.engine_pool.initialize()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.engine_pool.shutdown(drain_timeout=settings.ocr_drain_timeout)
        await close_db()
        logging.getLogger(__name__).info("shutdown")

    return app


app = create_app()
