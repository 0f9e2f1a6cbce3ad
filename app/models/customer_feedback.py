from sqlalchemy import Column, Integer, String, DateTime, Enum, CheckConstraint, func

from app.core.db import Base
from app.schemas.enums import FeedbackType


class CustomerFeedback(Base):
    __tablename__ = "customer_feedback"

    id = Column(Integer, primary_key=True, index=True)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    feedback_type = Column(
        Enum(FeedbackType, name="feedback_type_enum"),
        nullable=False,
        default=FeedbackType.general,
    )
    message = Column(String, nullable=False)
    rating = Column(
        Integer,
        CheckConstraint("rating BETWEEN 1 AND 5", name="customer_feedback_rating_check"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
