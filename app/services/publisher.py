from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger

from app.core.tracking_config import PUBLISH_INTERVAL
from app.schemas.enums import LocationPermission, PublisherState
from app.schemas.geo import GeoPoint
from app.schemas.vendor import VendorLocationRecord
from app.services.location_store import LocationStore, StoreError, get_location_store
from app.services.sensors import (
    WATCH_OPTIONS,
    DevicePositionSource,
    PositionSource,
    SensorError,
)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VendorLocationPublisher:
    """
    Turns "sharing on/off" into a bounded-rate stream of upserts.

    Sensor callbacks only overwrite a single-slot mailbox; a separate timer
    publishes whatever the mailbox holds every `interval` seconds.
    """

    def __init__(
        self,
        vendor_id: str,
        vendor_name: Optional[str],
        store: LocationStore,
        sensor: PositionSource,
        interval: float = PUBLISH_INTERVAL,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utcnow,
    ):
        self.vendor_id = vendor_id
        self.vendor_name = vendor_name
        self.interval = interval
        self.state = PublisherState.stopped
        self.notices: List[str] = []

        self._store = store
        self._sensor = sensor
        self._sleep = sleep
        self._clock = clock

        self._latest: Optional[GeoPoint] = None
        self._watch_handle: Optional[int] = None
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def latest(self) -> Optional[GeoPoint]:
        return self._latest

    def _notice(self, message: str) -> None:
        self.notices.append(message)

    # --- sensor callbacks ---

    def _on_sample(self, point: GeoPoint) -> None:
        self._latest = point

    def _on_sensor_error(self, error: SensorError) -> None:
        # the watch stays installed and keeps trying on its own
        logger.warning(f"[publisher] vendor={self.vendor_id} sensor error code={error.code}: {error}")
        self._notice(str(error))

    # --- lifecycle ---

    async def start(self) -> None:
        """Raises SensorError when the device refuses; state stays stopped."""
        if self.state is not PublisherState.stopped:
            return

        self.state = PublisherState.starting
        try:
            self._watch_handle = self._sensor.watch_position(
                self._on_sample, self._on_sensor_error, WATCH_OPTIONS
            )
        except SensorError as exc:
            self.state = PublisherState.stopped
            logger.warning(f"[publisher] vendor={self.vendor_id} could not start: {exc}")
            self._notice(str(exc))
            raise

        self.state = PublisherState.sharing
        self._timer = asyncio.create_task(self._run_timer())
        logger.info(f"[publisher] vendor={self.vendor_id} sharing every {self.interval}s")

    async def stop(self) -> None:
        if self.state is PublisherState.stopped:
            return

        # timer first so a late tick cannot republish is_active=true
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._watch_handle is not None:
            self._sensor.clear_watch(self._watch_handle)
            self._watch_handle = None
        self.state = PublisherState.stopped

        inflight, self._inflight = self._inflight, None
        if inflight is not None:
            await asyncio.wait([inflight])
            if not inflight.cancelled() and inflight.exception() is not None:
                logger.warning(f"[publisher] vendor={self.vendor_id} last publish failed: {inflight.exception()}")

        try:
            await self._store.deactivate(self.vendor_id)
        except StoreError as exc:
            logger.error(f"[publisher] vendor={self.vendor_id} final deactivate failed: {exc}")
            self._notice("Could not mark you offline; customers may still see you as live")
            return

        logger.info(f"[publisher] vendor={self.vendor_id} stopped sharing")

    # --- publishing ---

    async def _run_timer(self) -> None:
        while True:
            await self._sleep(self.interval)
            await self.publish_tick()

    async def publish_tick(self) -> bool:
        """Publish the latest sample. Returns True when a write was made."""
        if self.state is not PublisherState.sharing:
            return False

        point = self._latest
        if point is None:
            logger.debug(f"[publisher] vendor={self.vendor_id} no sample yet, skipping tick")
            return False

        record = VendorLocationRecord(
            vendor_id=self.vendor_id,
            vendor_name=self.vendor_name,
            position=point,
            is_active=True,
            last_updated=self._clock(),
        )

        # shielded so cancelling the timer never abandons a half-sent write
        self._inflight = asyncio.ensure_future(self._store.upsert_location(record))
        try:
            await asyncio.shield(self._inflight)
        except StoreError as exc:
            logger.warning(f"[publisher] vendor={self.vendor_id} publish failed, next tick retries: {exc}")
            self._notice("Location update failed, retrying")
            return False
        except Exception:
            # any store failure leaves the timer running
            logger.exception(f"[publisher] vendor={self.vendor_id} unexpected publish error, next tick retries")
            self._notice("Location update failed, retrying")
            return False
        finally:
            if self._inflight is not None and self._inflight.done():
                self._inflight = None

        return True


class PublisherRegistry:
    """One publisher and device source per sharing vendor in this process."""

    def __init__(
        self,
        store_factory: Callable[[], LocationStore] = get_location_store,
        interval: float = PUBLISH_INTERVAL,
        sleep: Sleep = asyncio.sleep,
    ):
        self._store_factory = store_factory
        self.interval = interval
        self._sleep = sleep
        self._sessions: Dict[str, tuple[VendorLocationPublisher, DevicePositionSource]] = {}

    def get(self, vendor_id: str) -> Optional[VendorLocationPublisher]:
        session = self._sessions.get(vendor_id)
        return session[0] if session else None

    def _source(self, vendor_id: str) -> Optional[DevicePositionSource]:
        # a session refused by the device stays registered but accepts nothing
        session = self._sessions.get(vendor_id)
        if session is None or session[0].state is not PublisherState.sharing:
            return None
        return session[1]

    async def start_sharing(
        self,
        vendor_id: str,
        vendor_name: Optional[str],
        permission: LocationPermission = LocationPermission.granted,
        first_sample: Optional[GeoPoint] = None,
    ) -> VendorLocationPublisher:
        session = self._sessions.get(vendor_id)
        if session is None:
            source = DevicePositionSource(permission=permission)
            publisher = VendorLocationPublisher(
                vendor_id,
                vendor_name,
                self._store_factory(),
                source,
                interval=self.interval,
                sleep=self._sleep,
            )
            self._sessions[vendor_id] = (publisher, source)
        else:
            publisher, source = session
            source.permission = permission

        await publisher.start()
        if first_sample is not None:
            source.push(first_sample)
        return publisher

    def push_sample(self, vendor_id: str, point: GeoPoint) -> bool:
        source = self._source(vendor_id)
        if source is None:
            return False
        source.push(point)
        return True

    def push_error(self, vendor_id: str, error: SensorError) -> bool:
        source = self._source(vendor_id)
        if source is None:
            return False
        source.fail(error)
        return True

    async def stop_sharing(self, vendor_id: str) -> Optional[VendorLocationPublisher]:
        session = self._sessions.pop(vendor_id, None)
        if session is None:
            return None
        publisher = session[0]
        await publisher.stop()
        return publisher

    async def stop_all(self) -> None:
        for vendor_id in list(self._sessions):
            await self.stop_sharing(vendor_id)


_REGISTRY: PublisherRegistry | None = None


def get_publisher_registry() -> PublisherRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = PublisherRegistry()
    return _REGISTRY
