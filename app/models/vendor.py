from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Enum, func

from app.core.db import Base
from app.schemas.enums import VendorCategory


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)

    # auth subject of the vendor account, also the key of vendor_locations
    user_id = Column(String, nullable=False, unique=True, index=True)

    vendor_name = Column(String, nullable=False)
    category = Column(
        Enum(VendorCategory, name="vendor_category_enum"),
        nullable=False,
        default=VendorCategory.other,
    )
    phone = Column(String, nullable=True)
    primary_area = Column(String, nullable=True)
    description = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)
    rating = Column(Float, nullable=True)

    is_approved = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
