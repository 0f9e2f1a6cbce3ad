from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from sqlalchemy.orm import Session

from app.core.auth import AuthUser, get_current_user
from app.core.db import get_db
from app.models.vendor import Vendor
from app.schemas.vendor import VendorRegisterRequest, VendorResponse

router = APIRouter(prefix="/vendors", tags=["vendors"])


# ----------------------------
# Dependencies
# ----------------------------
def get_own_vendor(
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> Vendor:
    vendor = db.query(Vendor).filter(Vendor.user_id == user.user_id).first()
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor profile not found")
    return vendor


def get_sharing_vendor(vendor: Vendor = Depends(get_own_vendor)) -> Vendor:
    if not vendor.is_approved:
        raise HTTPException(status_code=403, detail="Vendor is pending approval")
    if not vendor.is_active:
        raise HTTPException(status_code=403, detail="Vendor account is disabled")
    return vendor


# ----------------------------
# REGISTER
# ----------------------------
@router.post("", response_model=VendorResponse, status_code=201)
def register_vendor(
    payload: VendorRegisterRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
):
    existing = db.query(Vendor).filter(Vendor.user_id == user.user_id).first()
    if existing:
        raise HTTPException(status_code=409, detail="Vendor already registered")

    vendor = Vendor(
        user_id=user.user_id,
        vendor_name=payload.vendor_name,
        category=payload.category,
        phone=payload.phone,
        primary_area=payload.primary_area,
        description=payload.description,
        photo_url=payload.photo_url,
        is_approved=False,
        is_active=True,
    )
    db.add(vendor)
    db.commit()
    db.refresh(vendor)

    logger.info(f"Vendor registered | user={user.user_id} vendor={vendor.id}")
    return vendor


# ----------------------------
# LIST
# ----------------------------
@router.get("", response_model=list[VendorResponse])
def list_vendors(db: Session = Depends(get_db)):
    return db.query(Vendor).order_by(Vendor.created_at.desc(), Vendor.id.desc()).all()


@router.get("/me", response_model=VendorResponse)
def my_vendor(vendor: Vendor = Depends(get_own_vendor)):
    return vendor
