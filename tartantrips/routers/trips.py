"""
Trips Router

Trip creation, editing, listing and candidate discovery.
"""

from typing import List

from fastapi import APIRouter, Depends, status

from tartantrips.dependencies import get_current_email
from tartantrips.models.trip import (
    LandedTripCreate,
    TripCreate,
    TripProgressUpdate,
    TripResponse,
)
from tartantrips.services.candidate_service import CandidateService
from tartantrips.services.trip_service import TripService


router = APIRouter()
trip_service = TripService()
candidate_service = CandidateService()


@router.get("", response_model=List[TripResponse])
async def list_my_trips(email: str = Depends(get_current_email)):
    """Get the caller's trips, newest first."""
    return await trip_service.list_trips(email)


@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(
    data: TripCreate,
    email: str = Depends(get_current_email)
):
    """
    Create a trip.

    One trip per direction and date. The new-match check runs before the
    response is returned.
    """
    trip = await trip_service.create_trip(email, data)
    return trip_service.to_response(trip)


@router.post("/landed")
async def create_landed_trip(
    data: LandedTripCreate,
    email: str = Depends(get_current_email)
):
    """Landed at PIT: arrival trip starting now plus nearby arrivals."""
    return await trip_service.create_landed_trip(email, data)


@router.put("/{trip_id}", response_model=TripResponse)
async def update_trip(
    trip_id: str,
    data: TripCreate,
    email: str = Depends(get_current_email)
):
    """Edit a trip that is not yet complete."""
    trip = await trip_service.update_trip(email, trip_id, data)
    return trip_service.to_response(trip)


@router.delete("/{trip_id}")
async def delete_trip(
    trip_id: str,
    email: str = Depends(get_current_email)
):
    """Delete a trip that is not yet complete."""
    await trip_service.delete_trip(email, trip_id)
    return {"ok": True}


@router.patch("/{trip_id}/progress", response_model=TripResponse)
async def update_trip_progress(
    trip_id: str,
    data: TripProgressUpdate,
    email: str = Depends(get_current_email)
):
    """Mark an arrival as landed or met up."""
    trip = await trip_service.update_progress(email, trip_id, data)
    return trip_service.to_response(trip)


@router.get("/{trip_id}/candidates")
async def get_trip_candidates(
    trip_id: str,
    email: str = Depends(get_current_email)
):
    """Confirmed matches and open candidates, closest flight time first."""
    return await candidate_service.find_candidates(email, trip_id)
