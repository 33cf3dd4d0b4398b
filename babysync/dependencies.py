"""
Dependency wiring for the FastAPI app.

The store handle lives on ``app.state.db``; it is opened by the app
lifespan (or injected into ``create_app``) and closed at shutdown.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from babysync.config import Settings, get_settings
from babysync.db import DbClient, InMemoryDbClient, SqlDbClient
from babysync.registry import FamilyRegistry
from babysync.synchronizer import EntrySynchronizer


def build_db_client(settings: Settings) -> DbClient:
    """Open the store described by settings."""
    if settings.use_in_memory_backends:
        return InMemoryDbClient()
    return SqlDbClient(settings.resolved_database_url())


def get_db_client(request: Request) -> DbClient:
    return request.app.state.db


def get_clock(request: Request) -> Callable[[], int]:
    return request.app.state.clock


def get_registry(
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], int] = Depends(get_clock),
) -> FamilyRegistry:
    return FamilyRegistry(db, clock)


def get_synchronizer(
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], int] = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> EntrySynchronizer:
    return EntrySynchronizer(
        db, clock, max_clock_skew_seconds=settings.max_clock_skew_seconds
    )
