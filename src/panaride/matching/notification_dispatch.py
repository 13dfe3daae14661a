"""Offer publication and outcome fan-out.

Offers are made visible by writing the candidate set onto the trip
record, which driver clients poll or subscribe to. Push delivery is a
collaborator: listeners registered with ``add_offer_listener`` or
``add_outcome_listener`` hear about new offers and matching outcomes,
and a failing listener never breaks the matching process.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

from panaride.store.trip_store import TripStore
from panaride.trip import Trip

if TYPE_CHECKING:
    from panaride.matching.protocol import MatchResult

logger = logging.getLogger(__name__)

OfferListener = Callable[[Trip, Sequence[str]], Awaitable[None]]
OutcomeListener = Callable[["MatchResult"], Awaitable[None]]


class NotificationDispatch:
    def __init__(self, store: TripStore):
        self._store = store
        self._offer_listeners: list[OfferListener] = []
        self._outcome_listeners: list[OutcomeListener] = []

    def add_offer_listener(self, listener: OfferListener) -> None:
        self._offer_listeners.append(listener)

    def add_outcome_listener(self, listener: OutcomeListener) -> None:
        self._outcome_listeners.append(listener)

    async def publish_offer(
        self, trip_id: str, driver_ids: Sequence[str], radius_km: float
    ) -> Trip:
        """Write the candidate set onto the trip and tell push listeners."""
        trip = await self._store.offer(trip_id, driver_ids, radius_km)
        logger.info(
            f"Trip {trip_id} offered to {len(trip.offered_driver_ids)} drivers "
            f"within {radius_km} km"
        )
        for listener in self._offer_listeners:
            try:
                await listener(trip, trip.offered_driver_ids)
            except Exception:
                logger.exception(f"Offer listener failed for trip {trip_id}")
        return trip

    async def notify_outcome(self, result: "MatchResult") -> None:
        for listener in self._outcome_listeners:
            try:
                await listener(result)
            except Exception:
                logger.exception(f"Outcome listener failed for trip {result.trip_id}")
