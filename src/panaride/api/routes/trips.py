"""Trip lifecycle routes for passenger, driver and admin clients."""

from fastapi import APIRouter, Depends, status

from panaride.api.auth import verify_api_key
from panaride.api.dependencies import RideServiceDep
from panaride.api.models import (
    CancelRequest,
    ChatRequest,
    DriverActionRequest,
    ProgressRequest,
    TripCreateRequest,
)
from panaride.matching.protocol import MatchResult
from panaride.trip import ChatMessage, Trip

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/trips", response_model=Trip, status_code=status.HTTP_201_CREATED)
async def create_trip(body: TripCreateRequest, rides: RideServiceDep) -> Trip:
    return await rides.request_ride(
        passenger_id=body.passenger_id,
        origin=body.origin,
        destination=body.destination,
        service_id=body.service_id,
        distance_km=body.distance_km,
        beneficiary=body.beneficiary,
        auto_match=body.auto_match,
    )


@router.get("/trips/{trip_id}", response_model=Trip)
async def get_trip(trip_id: str, rides: RideServiceDep) -> Trip:
    return await rides.get_trip(trip_id)


@router.post("/trips/{trip_id}/match", response_model=MatchResult)
async def match_trip(trip_id: str, rides: RideServiceDep) -> MatchResult:
    """Run matching inline and return its outcome. Blocks for up to the full search."""
    return await rides.match(trip_id)


@router.post("/trips/{trip_id}/accept", response_model=Trip)
async def accept_trip(trip_id: str, body: DriverActionRequest, rides: RideServiceDep) -> Trip:
    return await rides.accept_ride(trip_id, body.driver_id)


@router.post("/trips/{trip_id}/reject", response_model=Trip)
async def reject_trip(trip_id: str, body: DriverActionRequest, rides: RideServiceDep) -> Trip:
    return await rides.reject_ride(trip_id, body.driver_id)


@router.post("/trips/{trip_id}/cancel", response_model=Trip)
async def cancel_trip(trip_id: str, body: CancelRequest, rides: RideServiceDep) -> Trip:
    return await rides.cancel_ride(trip_id, by=body.by, reason=body.reason)


@router.post("/trips/{trip_id}/start", response_model=Trip)
async def start_trip(trip_id: str, body: DriverActionRequest, rides: RideServiceDep) -> Trip:
    return await rides.start_ride(trip_id, body.driver_id)


@router.post("/trips/{trip_id}/progress", response_model=Trip)
async def update_trip_progress(
    trip_id: str, body: ProgressRequest, rides: RideServiceDep
) -> Trip:
    return await rides.update_progress(
        trip_id, progress=body.progress, eta_minutes=body.eta_minutes, heading=body.heading
    )


@router.post("/trips/{trip_id}/complete", response_model=Trip)
async def complete_trip(trip_id: str, body: DriverActionRequest, rides: RideServiceDep) -> Trip:
    return await rides.complete_ride(trip_id, body.driver_id)


@router.post(
    "/trips/{trip_id}/messages",
    response_model=ChatMessage,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(trip_id: str, body: ChatRequest, rides: RideServiceDep) -> ChatMessage:
    return await rides.post_chat_message(trip_id, body.sender_role, body.sender_name, body.text)


@router.get("/users/{user_id}/trips", response_model=list[Trip])
async def user_trips(user_id: str, rides: RideServiceDep) -> list[Trip]:
    return await rides.trip_history(user_id)


@router.get("/users/{user_id}/active-trip", response_model=Trip | None)
async def user_active_trip(user_id: str, rides: RideServiceDep) -> Trip | None:
    return await rides.active_trip(user_id)
