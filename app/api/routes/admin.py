from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from sqlalchemy.orm import Session

from app.core.auth import AuthUser, require_admin
from app.core.db import get_db
from app.core.tracking_config import STALE_AFTER_SECONDS
from app.models.vendor import Vendor
from app.schemas.vendor import VendorResponse
from app.services.location_store import LocationStore, StoreError, get_location_store
from app.services.publisher import utcnow

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_vendor(db: Session, vendor_id: int) -> Vendor:
    vendor = db.get(Vendor, vendor_id)
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor


# ----------------------------
# APPROVALS
# ----------------------------
@router.get("/vendors/pending", response_model=list[VendorResponse])
def pending_vendors(
    db: Session = Depends(get_db),
    admin: AuthUser = Depends(require_admin),
):
    return (
        db.query(Vendor)
        .filter(Vendor.is_approved.is_(False), Vendor.is_active.is_(True))
        .order_by(Vendor.created_at.asc(), Vendor.id.asc())
        .all()
    )


@router.post("/vendors/{vendor_id}/approve", response_model=VendorResponse)
def approve_vendor(
    vendor_id: int,
    db: Session = Depends(get_db),
    admin: AuthUser = Depends(require_admin),
):
    vendor = _get_vendor(db, vendor_id)
    vendor.is_approved = True
    vendor.is_active = True
    db.commit()
    db.refresh(vendor)

    logger.info(f"Vendor approved | vendor={vendor.id} admin={admin.user_id}")
    return vendor


@router.post("/vendors/{vendor_id}/reject", response_model=VendorResponse)
def reject_vendor(
    vendor_id: int,
    db: Session = Depends(get_db),
    admin: AuthUser = Depends(require_admin),
):
    vendor = _get_vendor(db, vendor_id)
    vendor.is_approved = False
    vendor.is_active = False
    db.commit()
    db.refresh(vendor)

    logger.info(f"Vendor rejected | vendor={vendor.id} admin={admin.user_id}")
    return vendor


# ----------------------------
# STALE LIVE LOCATIONS
# ----------------------------
@router.post("/vendor-locations/expire")
async def expire_stale_locations(
    admin: AuthUser = Depends(require_admin),
    store: LocationStore = Depends(get_location_store),
):
    cutoff = utcnow() - timedelta(seconds=STALE_AFTER_SECONDS)
    try:
        expired = await store.expire_stale(cutoff)
    except StoreError as exc:
        logger.error(f"[admin] expire failed: {exc}")
        raise HTTPException(status_code=503, detail="Location store unavailable")

    logger.info(f"Expired stale vendor locations | count={expired} admin={admin.user_id}")
    return {"expired": expired, "cutoff": cutoff}
