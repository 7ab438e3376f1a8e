from __future__ import annotations

import logging

from fastapi import FastAPI

from bioaudit.api.routes import router
from bioaudit.core.config import settings
from bioaudit.core.logging import configure_logging
from bioaudit.db.init_db import init_db


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Bio-Audit", version="0.1.0")
    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "message": "Bio-Audit conformity API",
            "docs": "/docs",
            "health": "/health",
        }

    @app.on_event("startup")
    async def _startup() -> None:
        logging.getLogger(__name__).info("startup", extra={"app_env": settings.app_env})
        await init_db()

    return app


app = create_app()
