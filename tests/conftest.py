import os

# Authenticated routes compare against API_KEY; set it before any app is built.
os.environ.setdefault("API_KEY", "test-api-key")

from collections.abc import Awaitable, Callable

import pytest

from panaride.matching import (
    DriverGeospatialIndex,
    DriverMatcher,
    GeospatialDriverLocator,
    NotificationDispatch,
)
from panaride.pricing.catalog import VehicleType
from panaride.settings import MatchingSettings
from panaride.store import InMemoryTripStore
from panaride.trip import Location, Trip

# Barquisimeto city centre
ORIGIN = (10.0647, -69.3451)


class VirtualClock:
    """Monotonic clock plus sleep that advance simulated time only.

    Actions registered with ``at`` run when a sleep crosses their time,
    which is how tests make drivers accept or passengers cancel mid-search.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._scheduled: list[tuple[float, Callable[[], Awaitable[object]]]] = []

    def __call__(self) -> float:
        return self.now

    def at(self, when: float, action: Callable[[], Awaitable[object]]) -> None:
        self._scheduled.append((when, action))
        self._scheduled.sort(key=lambda item: item[0])

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        target = self.now + seconds
        while self._scheduled and self._scheduled[0][0] <= target:
            when, action = self._scheduled.pop(0)
            self.now = max(self.now, when)
            await action()
        self.now = target


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def store() -> InMemoryTripStore:
    return InMemoryTripStore()


@pytest.fixture
def driver_index() -> DriverGeospatialIndex:
    return DriverGeospatialIndex(h3_resolution=9)


@pytest.fixture
def notifier(store) -> NotificationDispatch:
    return NotificationDispatch(store)


@pytest.fixture
def matching_settings() -> MatchingSettings:
    return MatchingSettings(
        search_radii_km=[1.0, 3.0, 5.0],
        poll_interval_seconds=2.0,
        tier_wait_seconds=15.0,
    )


@pytest.fixture
def matcher(store, driver_index, notifier, matching_settings, clock) -> DriverMatcher:
    return DriverMatcher(
        store,
        GeospatialDriverLocator(driver_index),
        notifier,
        settings=matching_settings,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def make_trip():
    """Factory for REQUESTED trips departing from the city centre."""

    def _make_trip(
        trip_id: str = "trip_1",
        passenger_id: str = "passenger_1",
        vehicle_type: VehicleType = VehicleType.CAR,
        origin: tuple[float, float] | None = ORIGIN,
        **overrides,
    ) -> Trip:
        lat, lng = origin if origin else (None, None)
        fields = {
            "trip_id": trip_id,
            "passenger_id": passenger_id,
            "origin": Location(address="Av. 20 con Calle 30", lat=lat, lng=lng),
            "destination": Location(address="Terminal de Pasajeros", lat=10.0702, lng=-69.3120),
            "service_id": "el_pana" if vehicle_type == VehicleType.CAR else "mototaxi",
            "vehicle_type": vehicle_type,
            "price_usd": 2.8,
            "price_local": 987.59,
            "distance_km": 4.2,
        }
        fields.update(overrides)
        return Trip(**fields)

    return _make_trip
