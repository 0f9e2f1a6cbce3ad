from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from app.core.tracking_config import DEFAULT_VENDOR_RATING, UNNAMED_VENDOR
from app.schemas.base import BaseSchema, TimestampedSchema
from app.schemas.enums import LocationPermission, PublisherState, VendorCategory
from app.schemas.geo import GeoPoint, LatLng


# ------------------------------------------------------------------
# Row parsing helpers
# ------------------------------------------------------------------

def parse_point(lat: Any, lng: Any) -> Optional[GeoPoint]:
    """Build a GeoPoint from raw store values, None when unusable."""
    if lat is None or lng is None:
        return None
    try:
        return GeoPoint(latitude=float(lat), longitude=float(lng))
    except (TypeError, ValueError, ValidationError):
        return None


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str) and raw:
        try:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    # sqlite hands back naive values; everything is written as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_rating(raw: Any) -> float:
    try:
        rating = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_VENDOR_RATING
    return rating if rating > 0 else DEFAULT_VENDOR_RATING


# ------------------------------------------------------------------
# Store records
# ------------------------------------------------------------------

class VendorLocationRecord(BaseModel):
    vendor_id: str
    vendor_name: Optional[str] = None
    position: Optional[GeoPoint] = None
    is_active: bool = False
    last_updated: Optional[datetime] = None

    class Config:
        frozen = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Optional["VendorLocationRecord"]:
        vendor_id = row.get("vendor_id")
        if vendor_id in (None, ""):
            logger.warning(f"[locations] dropping row without vendor_id: {dict(row)}")
            return None

        return cls(
            vendor_id=str(vendor_id),
            vendor_name=row.get("vendor_name") or None,
            position=parse_point(row.get("latitude"), row.get("longitude")),
            is_active=bool(row.get("is_active")),
            last_updated=parse_timestamp(row.get("last_updated")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "latitude": self.position.latitude if self.position else None,
            "longitude": self.position.longitude if self.position else None,
            "is_active": self.is_active,
            "last_updated": self.last_updated,
        }


class VendorDirectoryEntry(BaseModel):
    vendor_id: str
    name: str
    category: VendorCategory = VendorCategory.other
    rating: float = DEFAULT_VENDOR_RATING
    primary_area: Optional[str] = None
    is_approved: bool = False

    class Config:
        frozen = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Optional["VendorDirectoryEntry"]:
        vendor_id = row.get("user_id") or row.get("id")
        if vendor_id in (None, ""):
            logger.warning(f"[directory] dropping row without id: {dict(row)}")
            return None

        return cls(
            vendor_id=str(vendor_id),
            name=row.get("vendor_name") or UNNAMED_VENDOR,
            category=VendorCategory.parse(row.get("category")),
            rating=_parse_rating(row.get("rating")),
            primary_area=row.get("primary_area"),
            is_approved=bool(row.get("is_approved")),
        )


class DisplayVendor(BaseModel):
    """Merged, distance-annotated view of one vendor. Never persisted."""

    vendor_id: str
    name: str
    category: Optional[VendorCategory] = None
    rating: Optional[float] = None
    is_live: bool = False
    distance_km: Optional[float] = None
    position: Optional[GeoPoint] = None

    class Config:
        frozen = True


# ------------------------------------------------------------------
# Vendor API
# ------------------------------------------------------------------

class VendorRegisterRequest(BaseModel):
    vendor_name: str = Field(min_length=1)
    category: VendorCategory = VendorCategory.other
    phone: Optional[str] = None
    primary_area: Optional[str] = None
    description: Optional[str] = None
    photo_url: Optional[str] = None


class VendorResponse(TimestampedSchema):
    id: int
    user_id: str
    vendor_name: str
    category: VendorCategory
    phone: Optional[str] = None
    primary_area: Optional[str] = None
    description: Optional[str] = None
    photo_url: Optional[str] = None
    rating: Optional[float] = None
    is_approved: bool
    is_active: bool


class StartSharingRequest(BaseModel):
    permission: LocationPermission = LocationPermission.granted
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class LocationSampleRequest(LatLng):
    pass


class SensorErrorRequest(BaseModel):
    code: int = Field(ge=1, le=3)
    message: str = ""


class SharingStatusResponse(BaseSchema):
    vendor_id: str
    state: PublisherState
    publish_interval_seconds: float
    last_sample: Optional[GeoPoint] = None
    notices: list[str] = []


class NearbyResponse(BaseModel):
    vendors: list[DisplayVendor]
    customer_position: Optional[GeoPoint] = None
