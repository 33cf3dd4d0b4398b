"""
HTTP routes for the family sync API.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends

from babysync.dependencies import get_registry, get_synchronizer
from babysync.registry import FamilyRegistry
from babysync.schemas import (
    DeviceSnapshot,
    FamilyCodeResponse,
    FamilyInfoResponse,
    HealthResponse,
    JoinFamilyRequest,
    PullRequest,
    PullResponse,
    PushRequest,
    PushResponse,
)
from babysync.synchronizer import EntrySynchronizer

router = APIRouter()


@router.post("/family/create", response_model=FamilyCodeResponse)
def create_family(registry: FamilyRegistry = Depends(get_registry)):
    code = registry.create_family()
    return FamilyCodeResponse(code=code)


@router.post("/family/join", response_model=FamilyCodeResponse)
def join_family(
    payload: JoinFamilyRequest, registry: FamilyRegistry = Depends(get_registry)
):
    family = registry.join_family(payload.code)
    return FamilyCodeResponse(code=family.code)


@router.post("/sync/push", response_model=PushResponse)
def push(
    payload: PushRequest, sync: EntrySynchronizer = Depends(get_synchronizer)
):
    result = sync.push(payload.code, payload.device_id, payload.babies, payload.entries)
    return PushResponse(synced=result.accepted_count)


@router.post("/sync/pull", response_model=PullResponse)
def pull(
    payload: PullRequest, sync: EntrySynchronizer = Depends(get_synchronizer)
):
    result = sync.pull(payload.code, payload.since)
    return PullResponse(
        entries=[entry.as_dict() for entry in result.entries],
        devices=[DeviceSnapshot(**device.as_dict()) for device in result.devices],
        server_time=result.server_time,
    )


@router.get("/family/info/{code}", response_model=FamilyInfoResponse)
def family_info(code: str, registry: FamilyRegistry = Depends(get_registry)):
    info = registry.get_family_info(code)
    return FamilyInfoResponse(
        devices=info.device_count,
        entries=info.non_deleted_entry_count,
        last_sync=info.last_sync,
    )


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(ts=int(time.time() * 1000))
