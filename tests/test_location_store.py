from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.core.db import SessionLocal
from app.models.vendor import Vendor
from app.models.vendor_location import VendorLocation
from app.schemas.enums import ChangeType, VendorCategory
from app.schemas.geo import GeoPoint
from app.schemas.vendor import VendorLocationRecord
from app.services.change_feed import VENDOR_LOCATIONS_TABLE, ChangeFeed
from app.services.location_store import SqlLocationStore

NOW = datetime(2026, 1, 1, 9, 30, tzinfo=timezone.utc)


def _record(vendor_id: str, lat: float, lng: float, when: datetime = NOW) -> VendorLocationRecord:
    return VendorLocationRecord(
        vendor_id=vendor_id,
        vendor_name=f"Cart {vendor_id}",
        position=GeoPoint(latitude=lat, longitude=lng),
        is_active=True,
        last_updated=when,
    )


def _store_with_events():
    feed = ChangeFeed()
    events = []

    async def record(event):
        events.append(event)

    feed.subscribe(VENDOR_LOCATIONS_TABLE, record)
    return SqlLocationStore(SessionLocal, feed=feed), events


@pytest.mark.asyncio
async def test_upsert_keeps_one_row_per_vendor() -> None:
    store, events = _store_with_events()

    await store.upsert_location(_record("v1", 12.97, 77.59))
    await store.upsert_location(_record("v1", 12.92, 77.60, NOW + timedelta(seconds=7)))

    with SessionLocal() as db:
        rows = db.query(VendorLocation).all()
    assert len(rows) == 1
    assert rows[0].latitude == 12.92

    active = await store.fetch_active_locations()
    assert [r.vendor_id for r in active] == ["v1"]
    assert active[0].position == GeoPoint(latitude=12.92, longitude=77.60)
    assert active[0].last_updated == NOW + timedelta(seconds=7)

    assert [e.type for e in events] == [ChangeType.update, ChangeType.update]


@pytest.mark.asyncio
async def test_deactivate_hides_the_vendor_from_active_reads() -> None:
    store, events = _store_with_events()

    await store.upsert_location(_record("v1", 12.97, 77.59))
    await store.upsert_location(_record("v2", 12.98, 77.58))
    await store.deactivate("v1")

    active = await store.fetch_active_locations()
    assert [r.vendor_id for r in active] == ["v2"]
    assert events[-1].record == {"vendor_id": "v1", "is_active": False}


@pytest.mark.asyncio
async def test_deactivating_unknown_vendor_is_silent() -> None:
    store, events = _store_with_events()

    await store.deactivate("nobody")

    assert events == []


@pytest.mark.asyncio
async def test_expire_stale_flips_only_old_rows() -> None:
    store, _ = _store_with_events()

    await store.upsert_location(_record("fresh", 12.97, 77.59, NOW))
    await store.upsert_location(_record("old", 12.98, 77.58, NOW - timedelta(minutes=5)))

    expired = await store.expire_stale(NOW - timedelta(seconds=21))

    assert expired == 1
    assert [r.vendor_id for r in await store.fetch_active_locations()] == ["fresh"]


@pytest.mark.asyncio
async def test_directory_lists_only_approved_active_vendors() -> None:
    with SessionLocal() as db:
        db.add_all(
            [
                Vendor(user_id="u-ok", vendor_name="Ravi", category=VendorCategory.fruits, is_approved=True, is_active=True, rating=4.8),
                Vendor(user_id="u-pending", vendor_name="Suresh", is_approved=False, is_active=True),
                Vendor(user_id="u-disabled", vendor_name="Anita", is_approved=True, is_active=False),
            ]
        )
        db.commit()

    store = SqlLocationStore(SessionLocal)
    directory = await store.fetch_directory()

    assert len(directory) == 1
    entry = directory[0]
    assert entry.vendor_id == "u-ok"
    assert entry.name == "Ravi"
    assert entry.category is VendorCategory.fruits
    assert entry.rating == 4.8
