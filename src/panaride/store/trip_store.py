"""Trip record storage with atomic conditional updates.

Every write goes through ``update``, an atomic read-modify-write on a
single trip. Backends only implement that primitive; the acceptance
rule (offered, not rejected, still REQUESTED) lives here once, so no
backend can let two drivers accept the same trip.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable

from panaride.core.exceptions import NotFoundError, OfferUnavailableError, StateError
from panaride.pricing.liquidation import LiquidationResult
from panaride.trip import ACTIVE_STATUSES, Trip, TripStatus, utcnow

logger = logging.getLogger(__name__)

TripMutation = Callable[[Trip], None]


class _StatusMismatch(StateError):
    pass


def _require_requested(trip: Trip, action: str) -> None:
    if trip.status != TripStatus.REQUESTED:
        raise StateError(
            f"Trip {trip.trip_id} is {trip.status.value}, cannot {action}",
            details={"trip_id": trip.trip_id, "status": trip.status.value},
        )


class TripStore(ABC):
    """Trip persistence used by the matching protocol and ride service."""

    @abstractmethod
    async def create(self, trip: Trip) -> Trip: ...

    @abstractmethod
    async def get(self, trip_id: str) -> Trip:
        """Return a copy of the stored trip. Raises NotFoundError."""

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Trip]:
        """Trips where the user is passenger or driver, newest first."""

    @abstractmethod
    async def update(self, trip_id: str, mutation: TripMutation) -> Trip:
        """Apply mutation atomically; nothing is stored if it raises."""

    async def active_for_user(self, user_id: str) -> Trip | None:
        for trip in await self.list_for_user(user_id):
            if trip.status in ACTIVE_STATUSES:
                return trip
        return None

    async def offer(self, trip_id: str, driver_ids: Iterable[str], radius_km: float) -> Trip:
        """Publish an offer to a candidate set, replacing the previous one."""
        candidates = list(driver_ids)

        def apply(trip: Trip) -> None:
            _require_requested(trip, "offer")
            rejected = set(trip.rejected_driver_ids)
            trip.offered_driver_ids = [d for d in candidates if d not in rejected]
            trip.search_radius_km = radius_km

        return await self.update(trip_id, apply)

    async def start_matching(self, trip_id: str, radius_km: float) -> Trip:
        def apply(trip: Trip) -> None:
            _require_requested(trip, "start matching")
            if trip.matching_started_at is None:
                trip.matching_started_at = utcnow()
            trip.search_radius_km = radius_km

        return await self.update(trip_id, apply)

    async def expand_radius(self, trip_id: str, radius_km: float) -> Trip:
        def apply(trip: Trip) -> None:
            _require_requested(trip, "expand radius")
            trip.search_radius_km = radius_km

        return await self.update(trip_id, apply)

    async def reject(self, trip_id: str, driver_id: str) -> Trip:
        def apply(trip: Trip) -> None:
            _require_requested(trip, "reject")
            if driver_id not in trip.rejected_driver_ids:
                trip.rejected_driver_ids.append(driver_id)
            if driver_id in trip.offered_driver_ids:
                trip.offered_driver_ids.remove(driver_id)

        return await self.update(trip_id, apply)

    async def accept(
        self,
        trip_id: str,
        driver_id: str,
        settlement: LiquidationResult | None = None,
    ) -> Trip:
        """Accept the trip for driver_id if it is still on offer to them.

        The settlement liquidation, when given, is written by the same
        conditional update, so it only ever lands on an accepted trip.

        Raises:
            OfferUnavailableError: trip left REQUESTED, or was never
                offered to this driver, or the driver rejected it.
        """

        def apply(trip: Trip) -> None:
            if trip.status != TripStatus.REQUESTED:
                raise OfferUnavailableError(
                    f"Trip {trip.trip_id} is {trip.status.value}",
                    details={"trip_id": trip.trip_id, "driver_id": driver_id},
                )
            if driver_id not in trip.offered_driver_ids or driver_id in trip.rejected_driver_ids:
                raise OfferUnavailableError(
                    f"Trip {trip.trip_id} is not on offer to driver {driver_id}",
                    details={"trip_id": trip.trip_id, "driver_id": driver_id},
                )
            trip.transition_to(TripStatus.ACCEPTED)
            trip.driver_id = driver_id
            trip.offered_driver_ids = []
            trip.matching_completed_at = utcnow()
            if settlement is not None:
                trip.settlement = settlement

        return await self.update(trip_id, apply)

    async def compare_and_set_status(
        self, trip_id: str, expected: TripStatus, new: TripStatus
    ) -> bool:
        """Move expected -> new; False if the trip was no longer in expected."""

        def apply(trip: Trip) -> None:
            if trip.status != expected:
                raise _StatusMismatch(f"Trip {trip.trip_id} is {trip.status.value}")
            trip.transition_to(new)

        try:
            await self.update(trip_id, apply)
        except _StatusMismatch:
            return False
        return True


class InMemoryTripStore(TripStore):
    """Process-local store. Atomicity comes from a single asyncio.Lock."""

    def __init__(self) -> None:
        self._trips: dict[str, Trip] = {}
        self._lock = asyncio.Lock()

    async def create(self, trip: Trip) -> Trip:
        async with self._lock:
            if trip.trip_id in self._trips:
                raise StateError(f"Trip {trip.trip_id} already exists")
            self._trips[trip.trip_id] = trip.model_copy(deep=True)
        return trip.model_copy(deep=True)

    async def get(self, trip_id: str) -> Trip:
        async with self._lock:
            return self._get_locked(trip_id).model_copy(deep=True)

    async def list_for_user(self, user_id: str) -> list[Trip]:
        async with self._lock:
            trips = [t.model_copy(deep=True) for t in self._trips.values() if t.involves(user_id)]
        trips.sort(key=lambda t: t.created_at, reverse=True)
        return trips

    async def update(self, trip_id: str, mutation: TripMutation) -> Trip:
        async with self._lock:
            working = self._get_locked(trip_id).model_copy(deep=True)
            mutation(working)
            self._trips[trip_id] = working
            return working.model_copy(deep=True)

    def _get_locked(self, trip_id: str) -> Trip:
        trip = self._trips.get(trip_id)
        if trip is None:
            raise NotFoundError(f"Trip {trip_id} not found", details={"trip_id": trip_id})
        return trip
