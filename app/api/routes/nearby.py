import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import ValidationError

from app.core.tracking_config import STALE_AFTER_SECONDS
from app.schemas.enums import VendorCategory
from app.schemas.geo import GeoPoint, LatLng
from app.schemas.vendor import NearbyResponse
from app.services.change_feed import ChangeFeed, get_change_feed
from app.services.location_store import LocationStore, StoreError, get_location_store
from app.services.proximity import CustomerProximityView, filter_vendors, merge_display_vendors
from app.services.publisher import utcnow
from app.services.sensors import DevicePositionSource, sensor_error_from_code

router = APIRouter(prefix="/nearby", tags=["nearby"])


# ------------------------------------------------------------------
# ONE-SHOT
# ------------------------------------------------------------------

@router.get("", response_model=NearbyResponse)
async def nearby_vendors(
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    category: Optional[VendorCategory] = None,
    radius_km: Optional[float] = Query(default=None, gt=0),
    store: LocationStore = Depends(get_location_store),
):
    customer = GeoPoint(latitude=lat, longitude=lng) if lat is not None and lng is not None else None

    try:
        directory = await store.fetch_directory()
        locations = await store.fetch_active_locations()
    except StoreError as exc:
        logger.error(f"[nearby] store unavailable: {exc}")
        raise HTTPException(status_code=503, detail="Vendor data temporarily unavailable")

    vendors = merge_display_vendors(
        directory,
        locations,
        customer,
        now=utcnow(),
        stale_after=STALE_AFTER_SECONDS,
    )
    vendors = filter_vendors(vendors, category=category, radius_km=radius_km)
    return NearbyResponse(vendors=list(vendors), customer_position=customer)


# ------------------------------------------------------------------
# LIVE
# ------------------------------------------------------------------

def _vendors_message(vendors) -> Dict[str, Any]:
    return {"type": "vendors", "vendors": [v.model_dump(mode="json") for v in vendors]}


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        message = await outbox.get()
        await websocket.send_json(message)


async def _stop_pump(sender: asyncio.Task) -> Optional[BaseException]:
    """Cancel the sender and collect its failure, if it died first."""
    sender.cancel()
    await asyncio.wait([sender])
    if sender.cancelled():
        return None
    error = sender.exception()
    if error is not None:
        logger.warning(f"[nearby] sending to customer failed: {error!r}")
    return error


def _handle_client_message(
    message: Dict[str, Any],
    view: CustomerProximityView,
    sensor: DevicePositionSource,
) -> Optional[str]:
    """Apply one client message. Returns a follow-up action, or None when handled."""
    if not isinstance(message, dict):
        return "unknown"
    kind = message.get("type")

    if kind == "position":
        try:
            point = LatLng(lat=message.get("lat"), lng=message.get("lng")).to_point()
        except ValidationError:
            return "bad_position"
        # resolves the pending one-shot request, then keeps the view current
        sensor.push(point)
        view.update_position(point)
        return None

    if kind == "position_error":
        code = message.get("code")
        sensor.fail(sensor_error_from_code(code if isinstance(code, int) else 2, str(message.get("message") or "")))
        return None

    if kind == "refresh_directory":
        return "refresh_directory"

    return "unknown"


@router.websocket("/live")
async def nearby_live(
    websocket: WebSocket,
    store: LocationStore = Depends(get_location_store),
    feed: ChangeFeed = Depends(get_change_feed),
):
    await websocket.accept()

    outbox: asyncio.Queue = asyncio.Queue()
    sensor = DevicePositionSource()
    view = CustomerProximityView(
        store,
        feed,
        sensor,
        on_vendors=lambda vendors: outbox.put_nowait(_vendors_message(vendors)),
        on_notice=lambda text: outbox.put_nowait({"type": "notice", "message": text}),
    )
    sender = asyncio.create_task(_pump(websocket, outbox))

    try:
        await view.mount()
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                outbox.put_nowait({"type": "notice", "message": "Invalid message ignored"})
                continue
            action = _handle_client_message(message, view, sensor)

            if action == "refresh_directory":
                await view.refresh_directory()
            elif action == "bad_position":
                outbox.put_nowait({"type": "notice", "message": "Invalid position ignored"})
            elif action == "unknown":
                logger.debug(f"[nearby] ignoring message {message!r}")
    except WebSocketDisconnect:
        logger.info("[nearby] customer disconnected")
    finally:
        await view.teardown()
        await _stop_pump(sender)
