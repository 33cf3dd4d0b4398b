"""
Entry synchronizer: merges pushed entry batches into the family's shared
entry set and serves incremental pulls.

Merging is last-write-wins by (family_code, entry_id). Writes are never
rejected for carrying an older timestamp; timestamps only matter when a
pull filters on its watermark. Pulls return entries with
``updated_at > since``, so an entry stored in the same second as a
client's watermark but committed after that client's previous pull is not
delivered again.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from babysync.db import DbClient, DeviceSnapshotRecord, EntryRecord, server_clock
from babysync.errors import InvalidArgument, NotFound
from babysync.registry import FamilyRegistry, normalize_code
from babysync.snapshots import DeviceStateStore, require_device_id, require_profiles

logger = logging.getLogger(__name__)

DELETED_FIELD = "_deleted"
TIMESTAMP_FIELD = "_ts"


@dataclass
class PushResult:
    accepted_count: int


@dataclass
class PullResult:
    entries: list[EntryRecord] = field(default_factory=list)
    devices: list[DeviceSnapshotRecord] = field(default_factory=list)
    server_time: int = 0


def _as_number(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgument(f"{name} must be a number")
    if not math.isfinite(value):
        raise InvalidArgument(f"{name} must be a number")
    return value


class EntrySynchronizer:
    def __init__(
        self,
        db: DbClient,
        clock: Callable[[], int] = server_clock,
        max_clock_skew_seconds: int = 0,
    ):
        self.db = db
        self.clock = clock
        self.max_clock_skew_seconds = max_clock_skew_seconds
        self.registry = FamilyRegistry(db, clock)
        self.snapshots = DeviceStateStore(db, clock)

    def _entry_timestamp(self, raw: Any, now: int, entry_id: str) -> int:
        ts = _as_number(raw, TIMESTAMP_FIELD)
        if not ts:
            return now
        limit = now + self.max_clock_skew_seconds
        if ts > limit:
            logger.warning(
                "Clamping future timestamp %s on entry %s to %s", ts, entry_id, limit
            )
            return limit
        # Whole seconds, rounded up; non-positive stamps fall back to server time.
        stamp = math.ceil(ts)
        return stamp if stamp > 0 else now

    def _to_records(self, code: str, entries: Any, now: int) -> list[EntryRecord]:
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise InvalidArgument("entries must be a list")
        # Last occurrence of a duplicate id wins.
        merged: dict[str, EntryRecord] = {}
        for item in entries:
            if not isinstance(item, dict):
                raise InvalidArgument("Each entry must be an object")
            raw_id = item.get("id")
            if raw_id is None or raw_id == "" or isinstance(raw_id, (bool, dict, list)):
                raise InvalidArgument("Each entry needs an id")
            entry_id = str(raw_id)
            merged[entry_id] = EntryRecord(
                family_code=code,
                entry_id=entry_id,
                payload=item,
                deleted=bool(item.get(DELETED_FIELD)),
                updated_at=self._entry_timestamp(item.get(TIMESTAMP_FIELD), now, entry_id),
            )
        return list(merged.values())

    def push(
        self, code: Any, device_id: Any, profiles: Any, entries: Any
    ) -> PushResult:
        """
        Store the device's profile snapshot and upsert its entry batch in a
        single transaction.
        """
        normalized = normalize_code(code)
        if not normalized:
            raise InvalidArgument("Missing family code")
        device = require_device_id(device_id)
        profile_payload = require_profiles(profiles)
        now = self.clock()
        records = self._to_records(normalized, entries, now)

        saved = self.db.save_push(normalized, device, profile_payload, records, now)
        if not saved:
            raise NotFound("Family not found")
        accepted = len(entries) if entries else 0
        logger.info(
            "Push from %s/%s: %d entries (%d distinct)",
            normalized,
            device,
            accepted,
            len(records),
        )
        return PushResult(accepted_count=accepted)

    def pull(self, code: Any, since: Any = 0) -> PullResult:
        since_value = _as_number(since, "since") or 0
        family = self.registry.require_family(code)
        # Read before querying so rows committed during the query are not
        # skipped by a watermark taken after it.
        server_time = self.clock()
        entries = self.db.list_entries_since(family.code, since_value)
        devices = self.snapshots.list_snapshots(family.code)
        logger.debug(
            "Pull for %s since %s: %d entries, %d devices",
            family.code,
            since_value,
            len(entries),
            len(devices),
        )
        return PullResult(entries=entries, devices=devices, server_time=server_time)
