from pydantic import BaseModel, Field

from app.schemas.base import TimestampedSchema
from app.schemas.enums import FeedbackType


class FeedbackCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    feedback_type: FeedbackType = FeedbackType.general
    message: str = Field(min_length=1)
    # 0 means "not rated" in the submit form
    rating: int | None = Field(default=None, ge=0, le=5)


class FeedbackResponse(TimestampedSchema):
    id: int
    customer_name: str
    feedback_type: FeedbackType
    message: str
    rating: int | None = None
