"""
Device state store: the latest profile snapshot pushed by each device.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from babysync.db import DbClient, DeviceSnapshotRecord, server_clock
from babysync.errors import InvalidArgument, NotFound
from babysync.registry import normalize_code

logger = logging.getLogger(__name__)


def require_device_id(device_id: Any) -> str:
    if device_id is None or device_id == "":
        raise InvalidArgument("Missing device_id")
    if not isinstance(device_id, (str, int)) or isinstance(device_id, bool):
        raise InvalidArgument("Invalid device_id")
    return str(device_id)


def require_profiles(profiles: Any) -> list:
    if profiles is None:
        return []
    if not isinstance(profiles, list):
        raise InvalidArgument("babies must be a list")
    return profiles


class DeviceStateStore:
    def __init__(self, db: DbClient, clock: Callable[[], int] = server_clock):
        self.db = db
        self.clock = clock

    def save_snapshot(
        self,
        code: Any,
        device_id: Any,
        profile_payload: Any,
        timestamp: Optional[int] = None,
    ) -> None:
        """
        Replace the stored snapshot for (code, device_id) and bump the
        family's last_sync.
        """
        normalized = normalize_code(code)
        if not normalized:
            raise InvalidArgument("Missing family code")
        device = require_device_id(device_id)
        profiles = require_profiles(profile_payload)
        now = self.clock()
        saved = self.db.save_snapshot(
            normalized,
            device,
            profiles,
            updated_at=timestamp if timestamp is not None else now,
            now=now,
        )
        if not saved:
            raise NotFound("Family not found")
        logger.debug("Saved snapshot for %s/%s", normalized, device)

    def list_snapshots(self, code: Any) -> list[DeviceSnapshotRecord]:
        normalized = normalize_code(code)
        if not normalized:
            raise InvalidArgument("Missing family code")
        return self.db.list_snapshots(normalized)
