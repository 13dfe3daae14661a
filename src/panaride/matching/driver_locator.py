"""Geo-proximity query for available drivers."""

import logging
from collections.abc import Collection
from typing import Protocol

from pydantic import BaseModel, Field

from panaride.core.exceptions import DriverLookupError
from panaride.matching.driver_geospatial_index import DriverGeospatialIndex
from panaride.pricing.catalog import VehicleType

logger = logging.getLogger(__name__)

AVAILABLE = "available"
ON_TRIP = "on_trip"
OFFLINE = "offline"


class NearbyDriver(BaseModel):
    driver_id: str
    distance_km: float = Field(ge=0)


class DriverAvailability(BaseModel):
    driver_id: str
    lat: float
    lng: float
    vehicle_type: VehicleType
    status: str


class DriverLocator(Protocol):
    async def find_nearby_drivers(
        self,
        origin: tuple[float, float],
        radius_km: float,
        vehicle_type: VehicleType | None,
        exclude: Collection[str],
    ) -> list[NearbyDriver]:
        """Available drivers within radius_km of origin, nearest first.

        Raises:
            DriverLookupError: the query itself failed.
        """
        ...


class GeospatialDriverLocator:
    """DriverLocator over the in-process H3 index."""

    def __init__(self, index: DriverGeospatialIndex, status_filter: str = AVAILABLE):
        self._index = index
        self._status_filter = status_filter

    async def find_nearby_drivers(
        self,
        origin: tuple[float, float],
        radius_km: float,
        vehicle_type: VehicleType | None,
        exclude: Collection[str],
    ) -> list[NearbyDriver]:
        try:
            nearby = self._index.find_nearest_drivers(
                origin[0],
                origin[1],
                radius_km=radius_km,
                status_filter=self._status_filter,
                vehicle_type=vehicle_type,
                exclude=exclude,
            )
        except Exception as e:
            raise DriverLookupError(
                f"Spatial index query failed at {origin}: {e}",
                details={"origin": list(origin), "radius_km": radius_km},
            ) from e
        logger.debug(f"Spatial index returned {len(nearby)} drivers within {radius_km} km")
        return [NearbyDriver(driver_id=d, distance_km=dist) for d, dist in nearby]
