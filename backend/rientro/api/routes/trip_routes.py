"""
Traveler Action Routes for Rientro.

The mobile app calls these for check-in, SOS, and closing a trip. Contacts
are notified by the update hook that fires on the resulting write.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field

from rientro.models.schemas import GeoPoint, Trip
from rientro.services.engine import RientroEngine, get_engine


router = APIRouter(prefix="/api/trips", tags=["Trips"])


# ==========================================
# PYDANTIC MODELS
# ==========================================

class LocationBody(BaseModel):
    """Optional request body carrying the traveler's current position."""
    location: Optional[GeoPoint] = Field(None, description="Current coordinates")


def _trip_response(trip: Trip) -> dict:
    return {"status": "success", "trip": trip.model_dump(mode="json")}


# ==========================================
# ACTION ENDPOINTS
# ==========================================

@router.post(
    "/{trip_id}/check-in",
    summary="Check In",
    description="Record that the traveler is fine and reset escalation"
)
async def check_in(
    trip_id: str = Path(..., description="Trip ID"),
    body: Optional[LocationBody] = None,
    engine: RientroEngine = Depends(get_engine)
):
    location = body.location if body else None
    trip = await engine.actions.check_in(trip_id, location=location)
    return _trip_response(trip)


@router.post(
    "/{trip_id}/sos",
    summary="Trigger SOS",
    description="Move the trip straight to EMERGENCY / SOS"
)
async def trigger_sos(
    trip_id: str = Path(..., description="Trip ID"),
    body: Optional[LocationBody] = None,
    engine: RientroEngine = Depends(get_engine)
):
    location = body.location if body else None
    trip = await engine.actions.trigger_sos(trip_id, location=location)
    return _trip_response(trip)


@router.post("/{trip_id}/complete", summary="Complete Trip")
async def complete_trip(
    trip_id: str = Path(..., description="Trip ID"),
    engine: RientroEngine = Depends(get_engine)
):
    trip = await engine.actions.complete(trip_id)
    return _trip_response(trip)


@router.post("/{trip_id}/cancel", summary="Cancel Trip")
async def cancel_trip(
    trip_id: str = Path(..., description="Trip ID"),
    engine: RientroEngine = Depends(get_engine)
):
    trip = await engine.actions.cancel(trip_id)
    return _trip_response(trip)
