from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.models.customer_feedback import CustomerFeedback
from app.schemas.feedback import FeedbackCreateRequest, FeedbackResponse

router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.post("", response_model=FeedbackResponse, status_code=201)
def submit_feedback(
    payload: FeedbackCreateRequest,
    db: Session = Depends(get_db),
):
    feedback = CustomerFeedback(
        customer_name=payload.name,
        customer_email=payload.email or None,
        customer_phone=payload.phone or None,
        feedback_type=payload.feedback_type,
        message=payload.message,
        rating=payload.rating or None,
    )
    db.add(feedback)
    db.commit()
    db.refresh(feedback)

    logger.info(f"Feedback received | id={feedback.id} type={feedback.feedback_type.value}")
    return feedback
