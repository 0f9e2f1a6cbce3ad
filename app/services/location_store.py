from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from loguru import logger
from postgrest.exceptions import APIError
from sqlalchemy import Boolean, DateTime, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import STORE_BACKEND
from app.core.db import SessionLocal
from app.models.vendor import Vendor
from app.models.vendor_location import VendorLocation
from app.schemas.enums import ChangeType
from app.schemas.vendor import VendorDirectoryEntry, VendorLocationRecord
from app.services.change_feed import (
    VENDOR_LOCATIONS_TABLE,
    ChangeEvent,
    ChangeFeed,
    get_change_feed,
)
from app.services.supabase_admin import supabase_admin


class StoreError(Exception):
    """A read or write against the location store failed."""


class LocationStore(ABC):
    @abstractmethod
    async def upsert_location(self, record: VendorLocationRecord) -> None:
        ...

    @abstractmethod
    async def deactivate(self, vendor_id: str) -> None:
        ...

    @abstractmethod
    async def fetch_active_locations(self) -> List[VendorLocationRecord]:
        ...

    @abstractmethod
    async def fetch_directory(self) -> List[VendorDirectoryEntry]:
        ...

    @abstractmethod
    async def expire_stale(self, cutoff: datetime) -> int:
        ...


def _parse_rows(rows, parser) -> list:
    return [item for item in (parser(r) for r in rows) if item is not None]


# ------------------------------------------------------------------
# SQL backend
# ------------------------------------------------------------------

_UPSERT_LOCATION = text(
    """
    INSERT INTO vendor_locations (
        vendor_id,
        vendor_name,
        latitude,
        longitude,
        is_active,
        last_updated
    )
    VALUES (
        :vendor_id,
        :vendor_name,
        :latitude,
        :longitude,
        :is_active,
        :last_updated
    )
    ON CONFLICT(vendor_id) DO UPDATE SET
        vendor_name = excluded.vendor_name,
        latitude = excluded.latitude,
        longitude = excluded.longitude,
        is_active = excluded.is_active,
        last_updated = excluded.last_updated
    """
).bindparams(
    bindparam("is_active", type_=Boolean()),
    bindparam("last_updated", type_=DateTime(timezone=True)),
)

_DEACTIVATE_LOCATION = text(
    """
    UPDATE vendor_locations
    SET is_active = :inactive
    WHERE vendor_id = :vendor_id
    """
).bindparams(bindparam("inactive", type_=Boolean()))

_EXPIRE_STALE = text(
    """
    UPDATE vendor_locations
    SET is_active = :inactive
    WHERE is_active = :active
      AND last_updated < :cutoff
    """
).bindparams(
    bindparam("inactive", type_=Boolean()),
    bindparam("active", type_=Boolean()),
    bindparam("cutoff", type_=DateTime(timezone=True)),
)


def _columns_of(obj) -> Dict[str, Any]:
    return {c.name: getattr(obj, c.name) for c in obj.__table__.columns}


class SqlLocationStore(LocationStore):
    """
    Store backed by SQLAlchemy. Blocking work runs in a worker thread.

    With a feed attached, every successful write is announced on it, the
    same way the hosted database streams row changes.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        feed: Optional[ChangeFeed] = None,
    ):
        self._session_factory = session_factory
        self._feed = feed

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    async def _emit(self, change: ChangeType, record: Dict[str, Any]) -> None:
        if self._feed is not None:
            await self._feed.publish(ChangeEvent(type=change, table=VENDOR_LOCATIONS_TABLE, record=record))

    # --- writes ---

    def _upsert_sync(self, row: Dict[str, Any]) -> None:
        with self._session_factory() as db:
            db.execute(_UPSERT_LOCATION, row)
            db.commit()

    async def upsert_location(self, record: VendorLocationRecord) -> None:
        row = record.to_row()
        await self._run(self._upsert_sync, row)
        await self._emit(ChangeType.update, row)

    def _deactivate_sync(self, vendor_id: str) -> int:
        with self._session_factory() as db:
            result = db.execute(_DEACTIVATE_LOCATION, {"vendor_id": vendor_id, "inactive": False})
            db.commit()
            return result.rowcount

    async def deactivate(self, vendor_id: str) -> None:
        changed = await self._run(self._deactivate_sync, vendor_id)
        if changed:
            await self._emit(ChangeType.update, {"vendor_id": vendor_id, "is_active": False})

    def _expire_sync(self, cutoff: datetime) -> int:
        with self._session_factory() as db:
            result = db.execute(_EXPIRE_STALE, {"inactive": False, "active": True, "cutoff": cutoff})
            db.commit()
            return result.rowcount

    async def expire_stale(self, cutoff: datetime) -> int:
        changed = await self._run(self._expire_sync, cutoff)
        if changed:
            await self._emit(ChangeType.update, {"is_active": False})
        return changed

    # --- reads ---

    def _active_rows_sync(self) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.query(VendorLocation).filter(VendorLocation.is_active.is_(True)).all()
            return [_columns_of(r) for r in rows]

    async def fetch_active_locations(self) -> List[VendorLocationRecord]:
        rows = await self._run(self._active_rows_sync)
        return _parse_rows(rows, VendorLocationRecord.from_row)

    def _directory_rows_sync(self) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            rows = (
                db.query(Vendor)
                .filter(Vendor.is_approved.is_(True), Vendor.is_active.is_(True))
                .all()
            )
            return [_columns_of(r) for r in rows]

    async def fetch_directory(self) -> List[VendorDirectoryEntry]:
        rows = await self._run(self._directory_rows_sync)
        return _parse_rows(rows, VendorDirectoryEntry.from_row)


# ------------------------------------------------------------------
# Supabase backend
# ------------------------------------------------------------------

class SupabaseLocationStore(LocationStore):
    """
    Store backed by the hosted Supabase project.

    Change events come back through the database webhook, so this
    store never publishes to the feed itself.
    """

    def __init__(self, client_factory=supabase_admin):
        self._client_factory = client_factory

    async def _execute(self, build_query) -> List[Dict[str, Any]]:
        def run():
            return build_query(self._client_factory()).execute()

        try:
            response = await asyncio.to_thread(run)
        except (APIError, httpx.HTTPError) as exc:
            raise StoreError(str(exc)) from exc
        return response.data or []

    async def upsert_location(self, record: VendorLocationRecord) -> None:
        row = record.to_row()
        if row["last_updated"] is not None:
            row["last_updated"] = row["last_updated"].isoformat()

        await self._execute(
            lambda c: c.table(VENDOR_LOCATIONS_TABLE).upsert(row, on_conflict="vendor_id")
        )

    async def deactivate(self, vendor_id: str) -> None:
        await self._execute(
            lambda c: c.table(VENDOR_LOCATIONS_TABLE).update({"is_active": False}).eq("vendor_id", vendor_id)
        )

    async def expire_stale(self, cutoff: datetime) -> int:
        rows = await self._execute(
            lambda c: c.table(VENDOR_LOCATIONS_TABLE)
            .update({"is_active": False})
            .eq("is_active", True)
            .lt("last_updated", cutoff.isoformat())
        )
        return len(rows)

    async def fetch_active_locations(self) -> List[VendorLocationRecord]:
        rows = await self._execute(
            lambda c: c.table(VENDOR_LOCATIONS_TABLE).select("*").eq("is_active", True)
        )
        return _parse_rows(rows, VendorLocationRecord.from_row)

    async def fetch_directory(self) -> List[VendorDirectoryEntry]:
        rows = await self._execute(
            lambda c: c.table("vendors").select("*").eq("is_approved", True).eq("is_active", True)
        )
        return _parse_rows(rows, VendorDirectoryEntry.from_row)


# ------------------------------------------------------------------
# Provider
# ------------------------------------------------------------------

_STORE: LocationStore | None = None


def get_location_store() -> LocationStore:
    global _STORE
    if _STORE is not None:
        return _STORE

    if STORE_BACKEND == "supabase":
        _STORE = SupabaseLocationStore()
    elif STORE_BACKEND == "sql":
        _STORE = SqlLocationStore(SessionLocal, feed=get_change_feed())
    else:
        raise RuntimeError(f"Invalid STORE_BACKEND: {STORE_BACKEND}")

    logger.info(f"[store] using {type(_STORE).__name__}")
    return _STORE
