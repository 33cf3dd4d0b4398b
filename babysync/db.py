"""
Database abstraction for the family sync store: a SQLAlchemy client
(SQLite by default, Postgres in production) and an in-memory test
implementation.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def server_clock() -> int:
    """Server time in whole unix seconds."""
    return int(time.time())


class DbClient(Protocol):
    """Interface for the persistent sync store."""

    def get_family(self, code: str) -> Optional["FamilyRecord"]:
        ...

    def create_family(self, code: str, now: int) -> bool:
        ...

    def save_snapshot(
        self, code: str, device_id: str, profile_payload: Any, updated_at: int, now: int
    ) -> bool:
        ...

    def save_push(
        self,
        code: str,
        device_id: str,
        profile_payload: Any,
        entries: list["EntryRecord"],
        now: int,
    ) -> bool:
        ...

    def list_snapshots(self, code: str) -> list["DeviceSnapshotRecord"]:
        ...

    def list_entries_since(self, code: str, since: int) -> list["EntryRecord"]:
        ...

    def count_devices(self, code: str) -> int:
        ...

    def count_live_entries(self, code: str) -> int:
        ...

    def close(self) -> None:
        ...


@dataclass
class FamilyRecord:
    code: str
    created_at: int
    last_sync: int

    def as_dict(self) -> dict:
        return {
            "code": self.code,
            "created_at": self.created_at,
            "last_sync": self.last_sync,
        }


@dataclass
class DeviceSnapshotRecord:
    family_code: str
    device_id: str
    profile_payload: Any
    updated_at: int

    def as_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "babies": self.profile_payload,
            "updated_at": self.updated_at,
        }


@dataclass
class EntryRecord:
    family_code: str
    entry_id: str
    payload: dict
    deleted: bool
    updated_at: int

    def as_dict(self) -> dict:
        """Stored payload, marked with ``_deleted`` when tombstoned."""
        data = dict(self.payload)
        if self.deleted:
            data["_deleted"] = True
        return data


def _json_copy(value: Any) -> Any:
    # Mimic a serialize/deserialize round trip through the database.
    return json.loads(json.dumps(value))


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.families: Dict[str, FamilyRecord] = {}
        self.snapshots: Dict[tuple[str, str], DeviceSnapshotRecord] = {}
        self.entries: Dict[tuple[str, str], EntryRecord] = {}
        self._lock = threading.RLock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.families.clear()
            self.snapshots.clear()
            self.entries.clear()

    def close(self) -> None:
        pass

    def get_family(self, code: str) -> Optional[FamilyRecord]:
        with self._lock:
            family = self.families.get(code)
            if not family:
                return None
            return FamilyRecord(family.code, family.created_at, family.last_sync)

    def create_family(self, code: str, now: int) -> bool:
        with self._lock:
            if code in self.families:
                return False
            self.families[code] = FamilyRecord(code=code, created_at=now, last_sync=now)
            return True

    def save_snapshot(
        self, code: str, device_id: str, profile_payload: Any, updated_at: int, now: int
    ) -> bool:
        snapshot = DeviceSnapshotRecord(
            family_code=code,
            device_id=device_id,
            profile_payload=_json_copy(profile_payload),
            updated_at=updated_at,
        )
        with self._lock:
            family = self.families.get(code)
            if not family:
                return False
            self.snapshots[(code, device_id)] = snapshot
            family.last_sync = now
            return True

    def save_push(
        self,
        code: str,
        device_id: str,
        profile_payload: Any,
        entries: list[EntryRecord],
        now: int,
    ) -> bool:
        # Stage copies first so a bad payload fails before anything is applied.
        snapshot = DeviceSnapshotRecord(
            family_code=code,
            device_id=device_id,
            profile_payload=_json_copy(profile_payload),
            updated_at=now,
        )
        staged = [
            EntryRecord(
                family_code=code,
                entry_id=entry.entry_id,
                payload=_json_copy(entry.payload),
                deleted=entry.deleted,
                updated_at=entry.updated_at,
            )
            for entry in entries
        ]
        with self._lock:
            family = self.families.get(code)
            if not family:
                return False
            self.snapshots[(code, device_id)] = snapshot
            for entry in staged:
                self.entries[(code, entry.entry_id)] = entry
            family.last_sync = now
            return True

    def list_snapshots(self, code: str) -> list[DeviceSnapshotRecord]:
        with self._lock:
            items = [s for (c, _), s in self.snapshots.items() if c == code]
        return sorted(items, key=lambda s: s.device_id)

    def list_entries_since(self, code: str, since: int) -> list[EntryRecord]:
        with self._lock:
            items = [
                e
                for (c, _), e in self.entries.items()
                if c == code and e.updated_at > since
            ]
        return sorted(items, key=lambda e: (e.updated_at, e.entry_id))

    def count_devices(self, code: str) -> int:
        with self._lock:
            return sum(1 for (c, _) in self.snapshots if c == code)

    def count_live_entries(self, code: str) -> int:
        with self._lock:
            return sum(
                1 for (c, _), e in self.entries.items() if c == code and not e.deleted
            )


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (SQLite file,
    SQLite in-memory for tests, or Postgres).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("database_url is required for SqlDbClient")
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        # Sessions on a single shared connection must not interleave.
        self._shared_lock = None
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite:"):
                # One shared connection, otherwise each thread sees its own empty DB.
                engine_kwargs["poolclass"] = StaticPool
                self._shared_lock = threading.RLock()
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        logger.info("Opened sync store (%s)", self.engine.url.render_as_string())

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Closed sync store")

    def _serialized(self):
        return self._shared_lock if self._shared_lock is not None else nullcontext()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._serialized(), self.Session() as session:
            yield session

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """Session inside a transaction: committed on exit, rolled back on error."""
        with self._serialized(), self.Session.begin() as session:
            yield session

    def _upsert(self, session: Session, model, rows: list[dict], keys: list[str]) -> None:
        if not rows:
            return
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            stmt = sqlite_insert(model.__table__)
        elif dialect == "postgresql":
            stmt = pg_insert(model.__table__)
        else:
            for row in rows:
                session.merge(model(**row))
            return
        update_cols = {
            name: stmt.excluded[name] for name in rows[0] if name not in keys
        }
        session.execute(
            stmt.on_conflict_do_update(index_elements=keys, set_=update_cols), rows
        )

    def get_family(self, code: str) -> Optional[FamilyRecord]:
        with self._session() as session:
            row = session.get(FamilyRow, code)
            if not row:
                return None
            return FamilyRecord(
                code=row.code, created_at=row.created_at, last_sync=row.last_sync
            )

    def create_family(self, code: str, now: int) -> bool:
        try:
            with self._transaction() as session:
                if session.get(FamilyRow, code):
                    return False
                session.add(FamilyRow(code=code, created_at=now, last_sync=now))
        except IntegrityError:
            # Lost a race to a concurrent insert of the same code.
            return False
        return True

    def save_snapshot(
        self, code: str, device_id: str, profile_payload: Any, updated_at: int, now: int
    ) -> bool:
        with self._transaction() as session:
            family = session.get(FamilyRow, code, with_for_update=True)
            if not family:
                return False
            self._upsert(
                session,
                DeviceSnapshotRow,
                [
                    {
                        "family_code": code,
                        "device_id": device_id,
                        "data": profile_payload,
                        "updated_at": updated_at,
                    }
                ],
                ["family_code", "device_id"],
            )
            family.last_sync = now
        return True

    def save_push(
        self,
        code: str,
        device_id: str,
        profile_payload: Any,
        entries: list[EntryRecord],
        now: int,
    ) -> bool:
        with self._transaction() as session:
            family = session.get(FamilyRow, code, with_for_update=True)
            if not family:
                return False
            self._upsert(
                session,
                DeviceSnapshotRow,
                [
                    {
                        "family_code": code,
                        "device_id": device_id,
                        "data": profile_payload,
                        "updated_at": now,
                    }
                ],
                ["family_code", "device_id"],
            )
            self._upsert(
                session,
                EntryRow,
                [
                    {
                        "family_code": code,
                        "entry_id": entry.entry_id,
                        "data": entry.payload,
                        "deleted": entry.deleted,
                        "updated_at": entry.updated_at,
                    }
                    for entry in entries
                ],
                ["family_code", "entry_id"],
            )
            family.last_sync = now
        return True

    def list_snapshots(self, code: str) -> list[DeviceSnapshotRecord]:
        with self._session() as session:
            stmt = (
                select(DeviceSnapshotRow)
                .where(DeviceSnapshotRow.family_code == code)
                .order_by(DeviceSnapshotRow.device_id.asc())
            )
            return [
                DeviceSnapshotRecord(
                    family_code=row.family_code,
                    device_id=row.device_id,
                    profile_payload=row.data,
                    updated_at=row.updated_at,
                )
                for row in session.execute(stmt).scalars()
            ]

    def list_entries_since(self, code: str, since: int) -> list[EntryRecord]:
        with self._session() as session:
            stmt = (
                select(EntryRow)
                .where(EntryRow.family_code == code, EntryRow.updated_at > since)
                .order_by(EntryRow.updated_at.asc(), EntryRow.entry_id.asc())
            )
            return [
                EntryRecord(
                    family_code=row.family_code,
                    entry_id=row.entry_id,
                    payload=row.data,
                    deleted=bool(row.deleted),
                    updated_at=row.updated_at,
                )
                for row in session.execute(stmt).scalars()
            ]

    def count_devices(self, code: str) -> int:
        with self._session() as session:
            stmt = select(func.count()).select_from(DeviceSnapshotRow).where(
                DeviceSnapshotRow.family_code == code
            )
            return session.execute(stmt).scalar_one()

    def count_live_entries(self, code: str) -> int:
        with self._session() as session:
            stmt = select(func.count()).select_from(EntryRow).where(
                EntryRow.family_code == code, EntryRow.deleted.is_(False)
            )
            return session.execute(stmt).scalar_one()


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


Base = declarative_base()


class FamilyRow(Base):
    __tablename__ = "families"

    code = Column(String(6), primary_key=True)
    created_at = Column(Integer, nullable=False)
    last_sync = Column(Integer, nullable=False)


class DeviceSnapshotRow(Base):
    __tablename__ = "device_snapshots"

    family_code = Column(String(6), ForeignKey("families.code"), primary_key=True)
    device_id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(Integer, nullable=False)


class EntryRow(Base):
    __tablename__ = "entries"

    family_code = Column(String(6), ForeignKey("families.code"), primary_key=True)
    entry_id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    deleted = Column(Boolean, nullable=False, default=False)
    updated_at = Column(Integer, nullable=False, index=True)
