"""
Database Webhook Routes for Rientro.

Supabase calls these on every INSERT / UPDATE / DELETE of a trip row. The
row is validated into a Trip at the boundary; handler failures are returned
with a 200 so the webhook is not retried into duplicate notifications.
"""
import hmac
import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel

from rientro.core.config import Settings, get_settings
from rientro.core.database import TRIPS_TABLE
from rientro.core.exceptions import MalformedRecordError, WebhookAuthError
from rientro.models.schemas import Trip
from rientro.services.engine import RientroEngine, get_engine


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hooks", tags=["Hooks"])


# ==========================================
# PYDANTIC MODELS
# ==========================================

class WebhookPayload(BaseModel):
    """Supabase database webhook body."""
    type: Literal["INSERT", "UPDATE", "DELETE"]
    table: str
    record: Optional[dict[str, Any]] = None
    old_record: Optional[dict[str, Any]] = None


# ==========================================
# AUTH
# ==========================================

def verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(None, alias="X-Webhook-Secret"),
    settings: Settings = Depends(get_settings)
) -> None:
    """Reject calls without the shared secret, when one is configured."""
    if not settings.webhook_secret:
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, settings.webhook_secret):
        raise WebhookAuthError()


# ==========================================
# HOOK ENDPOINTS
# ==========================================

@router.post(
    "/trips",
    summary="Trip Change Webhook",
    description="Runs the create / update hooks for a changed trip row",
    dependencies=[Depends(verify_webhook_secret)]
)
async def trip_webhook(
    payload: WebhookPayload,
    engine: RientroEngine = Depends(get_engine)
):
    if payload.table != TRIPS_TABLE:
        logger.warning(f"Ignoring webhook for table '{payload.table}'")
        return {"status": "ignored", "reason": f"unexpected table {payload.table}"}

    if payload.type == "DELETE":
        return {"status": "ignored", "reason": "delete"}

    if payload.record is None:
        raise MalformedRecordError("Webhook body has no record", table=payload.table)
    trip = Trip.from_record(payload.record)

    if payload.type == "INSERT":
        result = await engine.hooks.on_trip_created(trip)
    else:
        if payload.old_record is None:
            raise MalformedRecordError(
                "UPDATE webhook body has no old_record",
                table=payload.table,
                record_id=trip.id
            )
        before = Trip.from_record(payload.old_record)
        result = await engine.hooks.on_trip_updated(before, trip)

    if not result.success:
        logger.error(f"{result.handler} finished with failures for trip {trip.id}")

    return result.to_dict()
