from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from app.schemas.enums import LocationPermission, PublisherState
from app.schemas.geo import GeoPoint
from app.services.publisher import PublisherRegistry, VendorLocationPublisher
from app.services.sensors import DevicePositionSource, PermissionDenied, PositionTimeout
from tests.conftest import FakeStore, ManualTicker, settle

NOW = datetime(2026, 1, 1, 9, 30, tzinfo=timezone.utc)
FIRST = GeoPoint(latitude=12.9716, longitude=77.5946)
SECOND = GeoPoint(latitude=12.9250, longitude=77.6033)


def _publisher(store, sensor=None, ticker=None):
    ticker = ticker or ManualTicker()
    sensor = sensor or DevicePositionSource()
    publisher = VendorLocationPublisher(
        "vendor-1",
        "Ravi's Vegetables",
        store,
        sensor,
        interval=7,
        sleep=ticker.sleep,
        clock=lambda: NOW,
    )
    return publisher, sensor, ticker


@pytest.mark.asyncio
async def test_tick_publishes_latest_sample_and_stop_deactivates_once() -> None:
    store = FakeStore()
    publisher, sensor, ticker = _publisher(store)

    await publisher.start()
    assert publisher.state is PublisherState.sharing

    # samples only fill the mailbox
    sensor.push(FIRST)
    sensor.push(SECOND)
    assert store.writes == []

    await ticker.advance()

    assert len(store.writes) == 1
    kind, record = store.writes[0]
    assert kind == "upsert"
    assert record.vendor_id == "vendor-1"
    assert record.vendor_name == "Ravi's Vegetables"
    assert record.is_active is True
    assert record.position == SECOND
    assert record.last_updated == NOW

    await publisher.stop()
    assert store.writes[1:] == [("deactivate", "vendor-1")]
    assert publisher.state is PublisherState.stopped
    assert sensor.watch_count == 0

    # a stopped timer never fires again
    sensor.push(FIRST)
    await ticker.advance()
    await ticker.advance()
    assert len(store.writes) == 2
    assert ticker.pending == 0


@pytest.mark.asyncio
async def test_tick_without_sample_writes_nothing() -> None:
    store = FakeStore()
    publisher, sensor, ticker = _publisher(store)

    await publisher.start()
    await ticker.advance()
    await ticker.advance()

    assert store.writes == []

    sensor.push(FIRST)
    await ticker.advance()
    assert [kind for kind, _ in store.writes] == ["upsert"]

    await publisher.stop()


@pytest.mark.asyncio
async def test_each_tick_republishes_the_last_value() -> None:
    store = FakeStore()
    publisher, sensor, ticker = _publisher(store)

    await publisher.start()
    sensor.push(FIRST)
    await ticker.advance()
    await ticker.advance()

    positions = [record.position for _, record in store.writes]
    assert positions == [FIRST, FIRST]

    await publisher.stop()


@pytest.mark.asyncio
async def test_start_refused_by_device_stays_stopped() -> None:
    store = FakeStore()
    sensor = DevicePositionSource(permission=LocationPermission.denied)
    publisher, _, ticker = _publisher(store, sensor=sensor)

    with pytest.raises(PermissionDenied):
        await publisher.start()

    assert publisher.state is PublisherState.stopped
    assert publisher.notices == ["Location permission denied"]

    await ticker.advance()
    await publisher.stop()
    assert store.writes == []


@pytest.mark.asyncio
async def test_stop_is_idempotent() -> None:
    store = FakeStore()
    publisher, _, _ = _publisher(store)

    await publisher.stop()
    assert store.writes == []

    await publisher.start()
    await publisher.stop()
    await publisher.stop()

    assert store.writes == [("deactivate", "vendor-1")]


@pytest.mark.asyncio
async def test_failed_publish_is_reported_and_next_tick_retries() -> None:
    store = FakeStore()
    publisher, sensor, ticker = _publisher(store)

    await publisher.start()
    sensor.push(FIRST)

    store.fail_writes = True
    await ticker.advance()
    assert store.writes == []
    assert publisher.state is PublisherState.sharing
    assert publisher.notices == ["Location update failed, retrying"]

    store.fail_writes = False
    sensor.push(SECOND)
    await ticker.advance()
    assert [record.position for _, record in store.writes] == [SECOND]

    await publisher.stop()


@pytest.mark.asyncio
async def test_failed_final_write_does_not_raise() -> None:
    store = FakeStore()
    publisher, _, _ = _publisher(store)

    await publisher.start()
    store.fail_writes = True
    await publisher.stop()

    assert publisher.state is PublisherState.stopped
    assert publisher.notices[-1].startswith("Could not mark you offline")


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_publish_before_deactivating() -> None:
    store = FakeStore()
    store.gate = asyncio.Event()
    publisher, sensor, ticker = _publisher(store)

    await publisher.start()
    sensor.push(FIRST)
    await ticker.advance()
    assert store.writes == []

    stopping = asyncio.create_task(publisher.stop())
    await settle()
    assert not stopping.done()

    store.gate.set()
    await stopping

    assert [kind for kind, _ in store.writes] == ["upsert", "deactivate"]


@pytest.mark.asyncio
async def test_sensor_error_while_sharing_keeps_the_session() -> None:
    store = FakeStore()
    publisher, sensor, ticker = _publisher(store)

    await publisher.start()
    sensor.fail(PositionTimeout())

    assert publisher.state is PublisherState.sharing
    assert publisher.notices == ["Timed out waiting for a location fix"]

    sensor.push(FIRST)
    await ticker.advance()
    assert len(store.writes) == 1

    await publisher.stop()


@pytest.mark.asyncio
async def test_registry_routes_samples_to_the_vendor_session() -> None:
    store = FakeStore()
    ticker = ManualTicker()
    registry = PublisherRegistry(store_factory=lambda: store, interval=7, sleep=ticker.sleep)

    publisher = await registry.start_sharing("vendor-1", "Ravi", first_sample=FIRST)
    assert publisher.latest == FIRST
    assert registry.get("vendor-1") is publisher

    assert registry.push_sample("vendor-1", SECOND) is True
    assert registry.push_sample("someone-else", SECOND) is False
    assert registry.push_error("someone-else", PositionTimeout()) is False

    await ticker.advance()
    assert store.writes[0][1].position == SECOND

    await registry.stop_all()
    assert store.writes[-1] == ("deactivate", "vendor-1")
    assert registry.get("vendor-1") is None
    assert await registry.stop_sharing("vendor-1") is None


@pytest.mark.asyncio
async def test_registry_second_start_keeps_one_publisher() -> None:
    store = FakeStore()
    registry = PublisherRegistry(store_factory=lambda: store, interval=7, sleep=ManualTicker().sleep)

    first = await registry.start_sharing("vendor-1", "Ravi")
    second = await registry.start_sharing("vendor-1", "Ravi")

    assert first is second
    await registry.stop_all()
    assert store.writes == [("deactivate", "vendor-1")]


@pytest.mark.asyncio
async def test_unexpected_store_error_keeps_the_timer_running() -> None:
    class BrokenOnce(FakeStore):
        def __init__(self) -> None:
            super().__init__()
            self.broken = True

        async def upsert_location(self, record) -> None:
            if self.broken:
                self.broken = False
                raise RuntimeError("driver bug")
            await super().upsert_location(record)

    store = BrokenOnce()
    publisher, sensor, ticker = _publisher(store)

    await publisher.start()
    sensor.push(FIRST)

    await ticker.advance()
    assert store.writes == []
    assert publisher.state is PublisherState.sharing
    assert publisher.notices == ["Location update failed, retrying"]

    await ticker.advance()
    assert [record.position for _, record in store.writes] == [FIRST]

    await publisher.stop()


@pytest.mark.asyncio
async def test_registry_refuses_samples_after_device_refused_start() -> None:
    store = FakeStore()
    registry = PublisherRegistry(store_factory=lambda: store, interval=7, sleep=ManualTicker().sleep)

    with pytest.raises(PermissionDenied):
        await registry.start_sharing("vendor-1", "Ravi", permission=LocationPermission.denied)

    assert registry.get("vendor-1").state is PublisherState.stopped
    assert registry.push_sample("vendor-1", FIRST) is False
    assert registry.push_error("vendor-1", PositionTimeout()) is False

    # granting permission later revives the same session
    publisher = await registry.start_sharing("vendor-1", "Ravi", permission=LocationPermission.granted)
    assert registry.push_sample("vendor-1", FIRST) is True
    assert publisher.latest == FIRST

    await registry.stop_all()
