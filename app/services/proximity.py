from __future__ import annotations

import asyncio
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from app.core.tracking_config import STALE_AFTER_SECONDS, UNNAMED_VENDOR
from app.schemas.enums import VendorCategory
from app.schemas.geo import GeoPoint
from app.schemas.vendor import DisplayVendor, VendorDirectoryEntry, VendorLocationRecord
from app.services.change_feed import VENDOR_LOCATIONS_TABLE, ChangeEvent, ChangeFeed, Subscription
from app.services.distance import distance_km
from app.services.location_store import LocationStore, StoreError
from app.services.publisher import utcnow
from app.services.sensors import ONE_SHOT_OPTIONS, PositionSource, SensorError


# ------------------------------------------------------------------
# Merge / rank
# ------------------------------------------------------------------

def _is_stale(record: VendorLocationRecord, now: Optional[datetime], stale_after: Optional[float]) -> bool:
    if stale_after is None or now is None or record.last_updated is None:
        return False
    return now - record.last_updated > timedelta(seconds=stale_after)


def _latest_by_vendor(locations: Iterable[VendorLocationRecord]) -> Dict[str, VendorLocationRecord]:
    """Collapse duplicate rows (redelivery, replays) to the newest one per vendor."""
    latest: Dict[str, VendorLocationRecord] = {}
    for record in locations:
        current = latest.get(record.vendor_id)
        if current is None or _newer(record, current):
            latest[record.vendor_id] = record
    return latest


def _newer(candidate: VendorLocationRecord, current: VendorLocationRecord) -> bool:
    if candidate.last_updated is None:
        return False
    if current.last_updated is None:
        return True
    return candidate.last_updated >= current.last_updated


def _live_fields(
    record: Optional[VendorLocationRecord],
    customer: Optional[GeoPoint],
    now: Optional[datetime],
    stale_after: Optional[float],
) -> Tuple[bool, Optional[float], Optional[GeoPoint]]:
    if record is None or not record.is_active or _is_stale(record, now, stale_after):
        return False, None, None

    position = record.position
    if position is None or customer is None:
        return True, None, position

    return True, distance_km(customer, position), position


def _sort_key(vendor: DisplayVendor):
    # unknown distance sorts as infinitely far
    distance = vendor.distance_km if vendor.distance_km is not None else math.inf
    return (distance, vendor.name.casefold(), vendor.vendor_id)


def merge_display_vendors(
    directory: Sequence[VendorDirectoryEntry],
    locations: Sequence[VendorLocationRecord],
    customer: Optional[GeoPoint],
    now: Optional[datetime] = None,
    stale_after: Optional[float] = None,
) -> Tuple[DisplayVendor, ...]:
    """
    Join directory entries with live locations and rank nearest first.

    Pure: the result depends only on the arguments. Vendors broadcasting
    without a directory entry are included with what the location row
    carries.
    """
    by_vendor = _latest_by_vendor(locations)
    merged: List[DisplayVendor] = []

    for entry in directory:
        is_live, distance, position = _live_fields(by_vendor.get(entry.vendor_id), customer, now, stale_after)
        merged.append(
            DisplayVendor(
                vendor_id=entry.vendor_id,
                name=entry.name,
                category=entry.category,
                rating=entry.rating,
                is_live=is_live,
                distance_km=distance,
                position=position,
            )
        )

    listed = {entry.vendor_id for entry in directory}
    for vendor_id, record in by_vendor.items():
        if vendor_id in listed:
            continue
        is_live, distance, position = _live_fields(record, customer, now, stale_after)
        merged.append(
            DisplayVendor(
                vendor_id=vendor_id,
                name=record.vendor_name or UNNAMED_VENDOR,
                is_live=is_live,
                distance_km=distance,
                position=position,
            )
        )

    return tuple(sorted(merged, key=_sort_key))


def filter_vendors(
    vendors: Iterable[DisplayVendor],
    category: Optional[VendorCategory] = None,
    radius_km: Optional[float] = None,
) -> Tuple[DisplayVendor, ...]:
    """Category and radius filter. Vendors with unknown distance pass the radius check."""
    out = []
    for vendor in vendors:
        if category is not None and vendor.category is not category:
            continue
        if radius_km is not None and vendor.distance_km is not None and vendor.distance_km > radius_km:
            continue
        out.append(vendor)
    return tuple(out)


# ------------------------------------------------------------------
# Live view
# ------------------------------------------------------------------

OnVendors = Callable[[Tuple[DisplayVendor, ...]], None]
OnNotice = Callable[[str], None]


class CustomerProximityView:
    """
    Keeps a ranked vendor list current for one customer.

    All inputs land in cached state and every change re-runs the same pure
    merge, so redelivered or out-of-order completions are harmless. Once torn
    down, late completions are dropped.
    """

    def __init__(
        self,
        store: LocationStore,
        feed: ChangeFeed,
        sensor: PositionSource,
        on_vendors: Optional[OnVendors] = None,
        on_notice: Optional[OnNotice] = None,
        stale_after: Optional[float] = STALE_AFTER_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._feed = feed
        self._sensor = sensor
        self._on_vendors = on_vendors
        self._on_notice = on_notice
        self._stale_after = stale_after
        self._clock = clock

        self.vendors: Tuple[DisplayVendor, ...] = ()
        self.notices: List[str] = []

        self._directory: Tuple[VendorDirectoryEntry, ...] = ()
        self._locations: Tuple[VendorLocationRecord, ...] = ()
        self._position: Optional[GeoPoint] = None

        # fetches can complete out of order; only the newest issued one may land
        self._issued = {"directory": 0, "locations": 0}
        self._applied = {"directory": 0, "locations": 0}

        self._alive = False
        self._subscription: Optional[Subscription] = None
        self._position_task: Optional[asyncio.Task] = None

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def position(self) -> Optional[GeoPoint]:
        return self._position

    def _notice(self, message: str) -> None:
        if not self._alive:
            return
        self.notices.append(message)
        if self._on_notice:
            self._on_notice(message)

    # --- lifecycle ---

    async def mount(self) -> None:
        self._alive = True
        self._subscription = self._feed.subscribe(VENDOR_LOCATIONS_TABLE, self._on_change)
        self._position_task = asyncio.create_task(self._locate_customer())

        await self.refresh_directory()
        await self.refresh_locations()

    async def teardown(self) -> None:
        self._alive = False

        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        task, self._position_task = self._position_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

    # --- inputs ---

    async def _locate_customer(self) -> None:
        try:
            point = await self._sensor.get_position(ONE_SHOT_OPTIONS)
        except SensorError as exc:
            logger.info(f"[proximity] customer location unavailable: {exc}")
            self._notice(f"{exc}. Distances are unknown.")
            return

        if self._alive:
            self.update_position(point)

    def update_position(self, point: GeoPoint) -> None:
        if not self._alive:
            return
        self._position = point
        self.recompute()

    def _issue(self, kind: str) -> int:
        self._issued[kind] += 1
        return self._issued[kind]

    def _superseded(self, kind: str, seq: int) -> bool:
        if seq < self._applied[kind]:
            logger.debug(f"[proximity] dropping out-of-order {kind} fetch #{seq}")
            return True
        self._applied[kind] = seq
        return False

    async def refresh_directory(self) -> None:
        seq = self._issue("directory")
        try:
            entries = await self._store.fetch_directory()
        except StoreError as exc:
            logger.warning(f"[proximity] directory fetch failed: {exc}")
            self._notice("Could not load vendors")
            return

        if not self._alive or self._superseded("directory", seq):
            return
        self._directory = tuple(entries)
        self.recompute()

    async def refresh_locations(self) -> None:
        seq = self._issue("locations")
        try:
            records = await self._store.fetch_active_locations()
        except StoreError as exc:
            logger.warning(f"[proximity] live locations fetch failed: {exc}")
            self._notice("Live vendor positions may be out of date")
            return

        if not self._alive or self._superseded("locations", seq):
            return
        self._locations = tuple(records)
        self.recompute()

    async def _on_change(self, event: ChangeEvent) -> None:
        # the event is only a cue; its payload may be stale or coalesced
        if not self._alive:
            return
        await self.refresh_locations()

    # --- output ---

    def recompute(self) -> Tuple[DisplayVendor, ...]:
        if not self._alive:
            return self.vendors

        vendors = merge_display_vendors(
            self._directory,
            self._locations,
            self._position,
            now=self._clock(),
            stale_after=self._stale_after,
        )
        self.vendors = vendors
        if self._on_vendors:
            self._on_vendors(vendors)
        return vendors
