import threading
from collections.abc import Collection

import h3

from panaride.geo.distance import haversine_distance_km
from panaride.pricing.catalog import VehicleType

# Approximate H3 edge length at resolution 9
_RES9_EDGE_M = 174


class DriverGeospatialIndex:
    """Spatial index for driver locations using H3 hexagonal cells."""

    def __init__(self, h3_resolution: int = 9):
        self._h3_resolution = h3_resolution
        self._h3_cells: dict[str, set[str]] = {}
        self._driver_locations: dict[str, tuple[float, float, str]] = {}
        self._driver_status: dict[str, str] = {}
        self._driver_vehicle: dict[str, VehicleType] = {}
        self._lock = threading.Lock()

    def add_driver(
        self,
        driver_id: str,
        lat: float,
        lon: float,
        status: str,
        vehicle_type: VehicleType,
    ) -> None:
        with self._lock:
            if driver_id in self._driver_locations:
                self._remove_locked(driver_id)
            cell = self._get_h3_cell(lat, lon)
            self._h3_cells.setdefault(cell, set()).add(driver_id)
            self._driver_locations[driver_id] = (lat, lon, cell)
            self._driver_status[driver_id] = status
            self._driver_vehicle[driver_id] = vehicle_type

    def update_driver_location(self, driver_id: str, lat: float, lon: float) -> None:
        with self._lock:
            if driver_id not in self._driver_locations:
                return

            _, _, old_cell = self._driver_locations[driver_id]
            new_cell = self._get_h3_cell(lat, lon)

            if old_cell != new_cell:
                self._discard_from_cell(old_cell, driver_id)
                self._h3_cells.setdefault(new_cell, set()).add(driver_id)

            self._driver_locations[driver_id] = (lat, lon, new_cell)

    def update_driver_status(self, driver_id: str, status: str) -> None:
        with self._lock:
            if driver_id in self._driver_status:
                self._driver_status[driver_id] = status

    def remove_driver(self, driver_id: str) -> None:
        with self._lock:
            if driver_id in self._driver_locations:
                self._remove_locked(driver_id)

    def find_nearest_drivers(
        self,
        lat: float,
        lon: float,
        radius_km: float,
        status_filter: str | set[str] = "available",
        vehicle_type: VehicleType | None = None,
        exclude: Collection[str] = (),
    ) -> list[tuple[str, float]]:
        """Drivers within radius_km of (lat, lon), nearest first."""
        with self._lock:
            if not self._driver_locations:
                return []

            filter_set: set[str] = (
                {status_filter} if isinstance(status_filter, str) else status_filter
            )

            center_cell = self._get_h3_cell(lat, lon)
            # Ring count that covers the full radius at resolution 9
            k = max(1, int(radius_km * 1000 / _RES9_EDGE_M) + 1)

            candidates: list[tuple[str, float]] = []
            for cell in h3.grid_disk(center_cell, k):
                for driver_id in self._h3_cells.get(cell, ()):
                    if driver_id in exclude:
                        continue
                    if self._driver_status.get(driver_id) not in filter_set:
                        continue
                    if vehicle_type is not None and self._driver_vehicle[driver_id] != vehicle_type:
                        continue
                    driver_lat, driver_lon, _ = self._driver_locations[driver_id]
                    distance = haversine_distance_km(lat, lon, driver_lat, driver_lon)
                    if distance <= radius_km:
                        candidates.append((driver_id, distance))

            candidates.sort(key=lambda x: x[1])
            return candidates

    def vehicle_type_of(self, driver_id: str) -> VehicleType | None:
        with self._lock:
            return self._driver_vehicle.get(driver_id)

    def status_of(self, driver_id: str) -> str | None:
        with self._lock:
            return self._driver_status.get(driver_id)

    def _remove_locked(self, driver_id: str) -> None:
        _, _, cell = self._driver_locations.pop(driver_id)
        self._discard_from_cell(cell, driver_id)
        self._driver_status.pop(driver_id, None)
        self._driver_vehicle.pop(driver_id, None)

    def _discard_from_cell(self, cell: str, driver_id: str) -> None:
        if cell in self._h3_cells:
            self._h3_cells[cell].discard(driver_id)
            if not self._h3_cells[cell]:
                del self._h3_cells[cell]

    def _get_h3_cell(self, lat: float, lon: float) -> str:
        return h3.latlng_to_cell(lat, lon, self._h3_resolution)

    def clear(self) -> None:
        with self._lock:
            self._h3_cells.clear()
            self._driver_locations.clear()
            self._driver_status.clear()
            self._driver_vehicle.clear()
