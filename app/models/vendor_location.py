from sqlalchemy import Column, String, Float, Boolean, DateTime, Index
from sqlalchemy.sql import func

from app.core.db import Base


class VendorLocation(Base):
    __tablename__ = "vendor_locations"

    # one live row per vendor, writes are upserts on this key
    vendor_id = Column(String, primary_key=True, index=True)
    vendor_name = Column(String, nullable=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    is_active = Column(Boolean, nullable=False, default=False)
    last_updated = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_vendor_locations_active", "is_active"),
        Index("idx_vendor_locations_last_updated", "last_updated"),
    )
