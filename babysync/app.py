"""
FastAPI application entry point for the family sync service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from babysync.config import get_settings
from babysync.db import DbClient, server_clock
from babysync.dependencies import build_db_client
from babysync.errors import SyncError
from babysync.routes import router
from babysync.schemas import ErrorResponse

logger = logging.getLogger(__name__)


def create_app(
    db: Optional[DbClient] = None, clock: Optional[Callable[[], int]] = None
) -> FastAPI:
    """
    Build the app. An injected ``db`` is used as-is and left open on
    shutdown; otherwise the store is opened from settings at startup and
    closed at shutdown.
    """
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_db = app.state.db is None
        if owns_db:
            app.state.db = build_db_client(settings)
        logger.info("BabySchlaf sync API ready (prefix %s)", settings.api_prefix)
        try:
            yield
        finally:
            if owns_db:
                app.state.db.close()
                app.state.db = None

    app = FastAPI(title="BabySchlaf Sync API", version="0.1.0", lifespan=lifespan)
    app.state.db = db
    app.state.clock = clock or server_clock
    app.include_router(router, prefix=settings.api_prefix)

    @app.exception_handler(SyncError)
    async def handle_sync_error(request: Request, exc: SyncError):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.message).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="Invalid request body").model_dump(),
        )

    return app


app = create_app()
