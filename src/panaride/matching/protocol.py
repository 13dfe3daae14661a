"""Radius-expansion driver matching.

One ``DriverMatcher.match`` call runs per REQUESTED trip. It searches a
fixed ascending list of radii; at each radius with candidates it offers
the trip to them and polls the stored status until a driver accepts,
the passenger cancels, or the tier's wait budget runs out. Empty tiers
are skipped without waiting.

The matcher never writes acceptance itself. Drivers accept through
``TripStore.accept`` (a compare-and-set), and the matcher only observes
the result. Its own terminal write, REQUESTED -> UNASSIGNED, is also a
compare-and-set, so an acceptance landing at the deadline still wins.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel

from panaride.core.exceptions import NotFoundError, StateError
from panaride.matching.driver_locator import DriverLocator, NearbyDriver
from panaride.matching.notification_dispatch import NotificationDispatch
from panaride.metrics import record_match_result
from panaride.ride_logging import log_trip_context
from panaride.settings import MatchingSettings
from panaride.store.trip_store import TripStore
from panaride.trip import Trip, TripStatus

logger = logging.getLogger(__name__)


class MatchOutcome(str, Enum):
    MATCHED = "MATCHED"
    NO_DRIVERS_AVAILABLE = "NO_DRIVERS_AVAILABLE"
    CANCELLED = "TRIP_CANCELLED"
    INVALID_STATE = "INVALID_STATE"
    NOT_FOUND = "NOT_FOUND"


class MatchResult(BaseModel):
    trip_id: str
    outcome: MatchOutcome
    driver_id: str | None = None
    radius_km: float | None = None
    attempt: int | None = None
    attempts: int = 0
    elapsed_seconds: float = 0.0
    reason: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome == MatchOutcome.MATCHED


@dataclass
class MatchingAttempt:
    """Transient search state for one trip. Never persisted."""

    trip_id: str
    started_at: float
    tier_index: int = 0
    radius_km: float = 0.0
    rejected_driver_ids: set[str] = field(default_factory=set)
    notified_driver_ids: list[str] = field(default_factory=list)
    tier_elapsed: float = 0.0

    @property
    def attempt(self) -> int:
        return self.tier_index + 1


class DriverMatcher:
    def __init__(
        self,
        store: TripStore,
        locator: DriverLocator,
        notifier: NotificationDispatch,
        settings: MatchingSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._store = store
        self._locator = locator
        self._notifier = notifier
        self._settings = settings or MatchingSettings()
        self._clock = clock
        self._sleep = sleep

    async def match(self, trip_id: str) -> MatchResult:
        """Find and assign a driver for a REQUESTED trip."""
        attempt = MatchingAttempt(trip_id=trip_id, started_at=self._clock())
        with log_trip_context(trip_id):
            try:
                result = await self._run(attempt)
            except NotFoundError:
                result = self._result(
                    attempt, MatchOutcome.NOT_FOUND, reason=f"Trip {trip_id} not found"
                )

            logger.info(
                f"Matching for trip {trip_id} finished: {result.outcome.value} "
                f"after {result.attempts} tier(s), {result.elapsed_seconds:.1f}s"
            )
            record_match_result(result)
            await self._notifier.notify_outcome(result)
        return result

    async def _run(self, attempt: MatchingAttempt) -> MatchResult:
        trip_id = attempt.trip_id
        radii = self._settings.search_radii_km

        trip = await self._store.get(trip_id)
        if trip.status != TripStatus.REQUESTED:
            return self._result(
                attempt,
                MatchOutcome.INVALID_STATE,
                reason=f"Trip is not in REQUESTED status: {trip.status.value}",
            )

        origin = trip.origin.coordinates or self._settings.default_origin
        if trip.origin.coordinates is None:
            logger.warning(f"Trip {trip_id} has no origin coordinates, using default {origin}")

        for tier_index, radius in enumerate(radii):
            attempt.tier_index = tier_index
            attempt.radius_km = radius
            attempt.tier_elapsed = 0.0
            logger.info(
                f"Trip {trip_id}: searching with radius {radius}km (attempt {attempt.attempt})"
            )

            try:
                if tier_index == 0:
                    trip = await self._store.start_matching(trip_id, radius)
                else:
                    trip = await self._store.expand_radius(trip_id, radius)
            except StateError:
                trip = await self._store.get(trip_id)

            stop = self._observe(trip, attempt)
            if stop:
                return stop

            attempt.rejected_driver_ids = set(trip.rejected_driver_ids)
            drivers = await self._find_candidates(trip, origin, attempt)
            if not drivers:
                logger.info(f"No drivers found in {radius}km radius")
                continue

            try:
                trip = await self._notifier.publish_offer(
                    trip_id, [d.driver_id for d in drivers], radius
                )
            except StateError:
                trip = await self._store.get(trip_id)
                return self._observe(trip, attempt) or self._invalid(attempt, trip)

            attempt.notified_driver_ids = list(trip.offered_driver_ids)
            stop = await self._await_acceptance(attempt)
            if stop:
                return stop

            logger.info(f"Timeout at {radius}km radius, expanding")

        return await self._mark_unassigned(attempt)

    async def _find_candidates(
        self, trip: Trip, origin: tuple[float, float], attempt: MatchingAttempt
    ) -> list[NearbyDriver]:
        try:
            return await self._locator.find_nearby_drivers(
                origin,
                attempt.radius_km,
                trip.vehicle_type,
                exclude=attempt.rejected_driver_ids,
            )
        except Exception as e:
            logger.error(
                f"Driver lookup failed at {attempt.radius_km}km for trip {trip.trip_id}, "
                f"treating tier as empty: {e}"
            )
            return []

    async def _await_acceptance(self, attempt: MatchingAttempt) -> MatchResult | None:
        """Poll until accepted, cancelled, or the tier budget is spent.

        The status is read before every sleep and once more after the
        budget runs out; no sleep is longer than one poll interval.
        """
        budget = self._settings.tier_wait_seconds
        poll = self._settings.poll_interval_seconds
        tier_start = self._clock()

        while True:
            trip = await self._store.get(attempt.trip_id)
            stop = self._observe(trip, attempt)
            if stop:
                return stop

            attempt.tier_elapsed = self._clock() - tier_start
            remaining = budget - attempt.tier_elapsed
            if remaining <= 0:
                return None
            await self._sleep(min(poll, remaining))

    async def _mark_unassigned(self, attempt: MatchingAttempt) -> MatchResult:
        trip_id = attempt.trip_id
        if await self._store.compare_and_set_status(
            trip_id, TripStatus.REQUESTED, TripStatus.UNASSIGNED
        ):
            logger.warning(f"No drivers found for trip {trip_id} after all attempts")
            return self._result(
                attempt,
                MatchOutcome.NO_DRIVERS_AVAILABLE,
                reason="NO_DRIVERS_AVAILABLE",
            )

        trip = await self._store.get(trip_id)
        return self._observe(trip, attempt) or self._invalid(attempt, trip)

    def _observe(self, trip: Trip, attempt: MatchingAttempt) -> MatchResult | None:
        """Map an externally changed status to a terminal result, or None to keep going."""
        if trip.status == TripStatus.REQUESTED:
            return None
        if trip.status == TripStatus.ACCEPTED and trip.driver_id:
            logger.info(f"Driver {trip.driver_id} accepted trip {trip.trip_id}")
            return self._result(
                attempt,
                MatchOutcome.MATCHED,
                driver_id=trip.driver_id,
                radius_km=attempt.radius_km,
                attempt_number=attempt.attempt,
            )
        if trip.status == TripStatus.CANCELLED:
            logger.info(f"Trip {trip.trip_id} cancelled during matching")
            return self._result(attempt, MatchOutcome.CANCELLED, reason="TRIP_CANCELLED")
        return self._invalid(attempt, trip)

    def _invalid(self, attempt: MatchingAttempt, trip: Trip) -> MatchResult:
        return self._result(
            attempt,
            MatchOutcome.INVALID_STATE,
            reason=f"Trip moved to {trip.status.value} during matching",
        )

    def _result(
        self,
        attempt: MatchingAttempt,
        outcome: MatchOutcome,
        driver_id: str | None = None,
        radius_km: float | None = None,
        attempt_number: int | None = None,
        reason: str | None = None,
    ) -> MatchResult:
        searched = attempt.attempt if attempt.radius_km else 0
        return MatchResult(
            trip_id=attempt.trip_id,
            outcome=outcome,
            driver_id=driver_id,
            radius_km=radius_km,
            attempt=attempt_number,
            attempts=searched,
            elapsed_seconds=self._clock() - attempt.started_at,
            reason=reason,
        )
