"""
Pydantic schemas for the sync HTTP API.

Request fields are loosely typed on purpose: missing or malformed values
are reported by the sync components as InvalidArgument (HTTP 400).
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel


class JoinFamilyRequest(BaseModel):
    code: Optional[Any] = None


class FamilyCodeResponse(BaseModel):
    ok: Literal[True] = True
    code: str


class PushRequest(BaseModel):
    code: Optional[Any] = None
    device_id: Optional[Any] = None
    babies: Optional[Any] = None
    entries: Optional[Any] = None


class PushResponse(BaseModel):
    ok: Literal[True] = True
    synced: int


class PullRequest(BaseModel):
    code: Optional[Any] = None
    since: Optional[Any] = None


class DeviceSnapshot(BaseModel):
    device_id: str
    babies: Any
    updated_at: int


class PullResponse(BaseModel):
    ok: Literal[True] = True
    entries: list[dict]
    devices: list[DeviceSnapshot]
    server_time: int


class FamilyInfoResponse(BaseModel):
    ok: Literal[True] = True
    devices: int
    entries: int
    last_sync: int


class HealthResponse(BaseModel):
    ok: Literal[True] = True
    ts: int


class ErrorResponse(BaseModel):
    ok: Literal[False] = False
    error: str
