from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from app.models.vendor import Vendor
from app.api.routes.vendors import get_own_vendor, get_sharing_vendor
from app.schemas.enums import PublisherState
from app.schemas.vendor import (
    LocationSampleRequest,
    SensorErrorRequest,
    SharingStatusResponse,
    StartSharingRequest,
)
from app.services.publisher import PublisherRegistry, VendorLocationPublisher, get_publisher_registry
from app.services.sensors import SensorError, sensor_error_from_code

router = APIRouter(prefix="/vendor/sharing", tags=["sharing"])


def _status(vendor_id: str, publisher: VendorLocationPublisher | None, interval: float) -> SharingStatusResponse:
    if publisher is None:
        return SharingStatusResponse(
            vendor_id=vendor_id,
            state=PublisherState.stopped,
            publish_interval_seconds=interval,
        )
    return SharingStatusResponse(
        vendor_id=vendor_id,
        state=publisher.state,
        publish_interval_seconds=publisher.interval,
        last_sample=publisher.latest,
        notices=list(publisher.notices),
    )


@router.get("", response_model=SharingStatusResponse)
def sharing_status(
    vendor: Vendor = Depends(get_own_vendor),
    registry: PublisherRegistry = Depends(get_publisher_registry),
):
    return _status(vendor.user_id, registry.get(vendor.user_id), registry.interval)


@router.post("/start", response_model=SharingStatusResponse)
async def start_sharing(
    payload: StartSharingRequest,
    vendor: Vendor = Depends(get_sharing_vendor),
    registry: PublisherRegistry = Depends(get_publisher_registry),
):
    first_sample = None
    if payload.lat is not None and payload.lng is not None:
        first_sample = LocationSampleRequest(lat=payload.lat, lng=payload.lng).to_point()

    try:
        publisher = await registry.start_sharing(
            vendor.user_id,
            vendor.vendor_name,
            permission=payload.permission,
            first_sample=first_sample,
        )
    except SensorError as exc:
        # not a failure of the app: the vendor has to enable location
        raise HTTPException(status_code=409, detail=str(exc))

    logger.info(f"Sharing started | vendor={vendor.user_id}")
    return _status(vendor.user_id, publisher, registry.interval)


@router.post("/samples", status_code=202)
async def push_sample(
    payload: LocationSampleRequest,
    vendor: Vendor = Depends(get_own_vendor),
    registry: PublisherRegistry = Depends(get_publisher_registry),
):
    if not registry.push_sample(vendor.user_id, payload.to_point()):
        raise HTTPException(status_code=409, detail="Location sharing is not started")
    return {"status": "accepted"}


@router.post("/errors", status_code=202)
async def push_sensor_error(
    payload: SensorErrorRequest,
    vendor: Vendor = Depends(get_own_vendor),
    registry: PublisherRegistry = Depends(get_publisher_registry),
):
    error = sensor_error_from_code(payload.code, payload.message)
    if not registry.push_error(vendor.user_id, error):
        raise HTTPException(status_code=409, detail="Location sharing is not started")
    return {"status": "accepted"}


@router.post("/stop", response_model=SharingStatusResponse)
async def stop_sharing(
    vendor: Vendor = Depends(get_own_vendor),
    registry: PublisherRegistry = Depends(get_publisher_registry),
):
    publisher = await registry.stop_sharing(vendor.user_id)
    logger.info(f"Sharing stopped | vendor={vendor.user_id}")
    return _status(vendor.user_id, publisher, registry.interval)
