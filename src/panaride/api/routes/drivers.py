"""Driver position and availability reports."""

from fastapi import APIRouter, Depends

from panaride.api.auth import verify_api_key
from panaride.api.dependencies import RideServiceDep
from panaride.api.models import DriverLocationRequest
from panaride.matching.driver_locator import DriverAvailability

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.put("/drivers/{driver_id}/location", response_model=DriverAvailability)
async def update_driver_location(
    driver_id: str, body: DriverLocationRequest, rides: RideServiceDep
) -> DriverAvailability:
    return await rides.update_driver_location(
        driver_id,
        lat=body.lat,
        lng=body.lng,
        vehicle_type=body.vehicle_type,
        available=body.available,
    )
