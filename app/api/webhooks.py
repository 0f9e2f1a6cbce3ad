from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from app.schemas.enums import ChangeType
from app.services.change_feed import VENDOR_LOCATIONS_TABLE, ChangeEvent, ChangeFeed, get_change_feed

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


# ---------------------------
# Models
# ---------------------------

class SupabaseWebhookPayload(BaseModel):
    type: ChangeType
    table: str

    # avoid pydantic warning about "schema" shadowing BaseModel attr
    schema_: Optional[str] = Field(default=None, alias="schema")

    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


# ---------------------------
# Helpers
# ---------------------------

def _require_webhook_secret(x_webhook_secret: Optional[str]) -> None:
    expected = os.getenv("WEBHOOK_SECRET")
    if not expected:
        raise HTTPException(status_code=500, detail="WEBHOOK_SECRET not set on server")
    if not x_webhook_secret or x_webhook_secret != expected:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


# ---------------------------
# Routes
# ---------------------------

@router.post("/supabase/vendor-locations")
async def vendor_locations_webhook(
    request: Request,
    x_webhook_secret: Optional[str] = Header(None),
    feed: ChangeFeed = Depends(get_change_feed),
):
    _require_webhook_secret(x_webhook_secret)

    body_bytes = await request.body()
    if not body_bytes:
        return {"ok": True, "skipped": "empty body"}

    try:
        payload = SupabaseWebhookPayload(**json.loads(body_bytes.decode("utf-8")))
    except (ValueError, TypeError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    if payload.table != VENDOR_LOCATIONS_TABLE:
        return {"ok": True, "skipped": f"table {payload.table}"}

    delivered = await feed.publish(
        ChangeEvent(
            type=payload.type,
            table=payload.table,
            record=payload.record or {},
            old_record=payload.old_record,
        )
    )
    logger.debug(f"[webhook] {payload.type.value} on {payload.table} -> {delivered} subscribers")
    return {"ok": True, "delivered": delivered}
