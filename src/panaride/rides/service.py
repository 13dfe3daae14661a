"""Ride lifecycle on top of the trip store, fare engine and matcher."""

import asyncio
import logging
import uuid
from collections import defaultdict

from panaride.core.exceptions import OfferUnavailableError, StateError, ValidationError
from panaride.matching.driver_geospatial_index import DriverGeospatialIndex
from panaride.matching.driver_locator import AVAILABLE, OFFLINE, ON_TRIP, DriverAvailability
from panaride.matching.protocol import DriverMatcher, MatchResult
from panaride.metrics import record_liquidation
from panaride.pricing.catalog import ServiceCatalog, VehicleType
from panaride.pricing.exchange_rate import ExchangeRateProvider
from panaride.pricing.liquidation import (
    FareQuote,
    LiquidationRates,
    LiquidationResult,
    calculate_price,
    compute_liquidation,
    default_catalog,
)
from panaride.ride_logging import log_trip_context
from panaride.settings import PricingSettings
from panaride.store.trip_store import TripStore
from panaride.trip import (
    ACTIVE_STATUSES,
    CancellationActor,
    ChatMessage,
    Location,
    RideBeneficiary,
    SenderRole,
    Trip,
    TripStatus,
)

logger = logging.getLogger(__name__)


class RideService:
    def __init__(
        self,
        store: TripStore,
        matcher: DriverMatcher,
        rate_provider: ExchangeRateProvider,
        catalog: ServiceCatalog | None = None,
        pricing: PricingSettings | None = None,
        driver_index: DriverGeospatialIndex | None = None,
    ):
        self._store = store
        self._matcher = matcher
        self._rate_provider = rate_provider
        self._catalog = catalog or default_catalog()
        self._rates = LiquidationRates.from_settings(pricing or PricingSettings())
        self._matching_tasks: set[asyncio.Task[MatchResult]] = set()
        self._driver_index = driver_index or DriverGeospatialIndex()
        self._driver_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def store(self) -> TripStore:
        return self._store

    @property
    def catalog(self) -> ServiceCatalog:
        return self._catalog

    @property
    def driver_index(self) -> DriverGeospatialIndex:
        return self._driver_index

    def quote(self, service_id: str, distance_km: float) -> FareQuote:
        """Price a trip at the current exchange rate."""
        quote = calculate_price(
            distance_km,
            self._rate_provider.current(),
            service_id=service_id,
            catalog=self._catalog,
            rates=self._rates,
        )
        record_liquidation(quote.liquidation, stage="quote")
        return quote

    async def request_ride(
        self,
        passenger_id: str,
        origin: Location,
        destination: Location,
        service_id: str,
        distance_km: float,
        beneficiary: RideBeneficiary | None = None,
        auto_match: bool = True,
    ) -> Trip:
        """Persist a REQUESTED trip and start matching in the background."""
        quote = self.quote(service_id, distance_km)
        service = self._catalog.get(service_id)

        trip = Trip(
            trip_id=str(uuid.uuid4()),
            passenger_id=passenger_id,
            origin=origin,
            destination=destination,
            service_id=service.id,
            vehicle_type=service.vehicle_type,
            price_usd=quote.usd,
            price_local=quote.local,
            distance_km=quote.liquidation.input.distance_km,
            liquidation=quote.liquidation,
            beneficiary=beneficiary,
        )
        trip = await self._store.create(trip)

        with log_trip_context(trip.trip_id, passenger_id=passenger_id, service_id=service_id):
            logger.info(
                f"Trip requested: {service.name}, {trip.distance_km} km, "
                f"${trip.price_usd} / {trip.price_local} local"
            )

        if auto_match:
            self._schedule_matching(trip.trip_id)
        return trip

    async def match(self, trip_id: str) -> MatchResult:
        return await self._matcher.match(trip_id)

    def _schedule_matching(self, trip_id: str) -> None:
        task = asyncio.create_task(self._matcher.match(trip_id), name=f"match-{trip_id}")
        self._matching_tasks.add(task)
        task.add_done_callback(self._on_matching_done)

    def _on_matching_done(self, task: "asyncio.Task[MatchResult]") -> None:
        self._matching_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Matching task {task.get_name()} failed: {exc}", exc_info=exc)

    async def wait_for_matching(self) -> None:
        """Wait for every in-flight matching task to finish."""
        while self._matching_tasks:
            await asyncio.gather(*list(self._matching_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._matching_tasks):
            task.cancel()
        await asyncio.gather(*list(self._matching_tasks), return_exceptions=True)
        self._matching_tasks.clear()

    async def accept_ride(self, trip_id: str, driver_id: str) -> Trip:
        """Accept an offered trip and store the settlement liquidation.

        Raises:
            OfferUnavailableError: someone else won, the offer is gone, or
                the driver is already on another trip.
        """
        async with self._driver_locks[driver_id]:
            busy = await self._active_trip_as_driver(driver_id)
            if busy is not None:
                raise OfferUnavailableError(
                    f"Driver {driver_id} is already on trip {busy.trip_id}",
                    details={"trip_id": trip_id, "driver_id": driver_id},
                )

            settlement = self._settle(await self._store.get(trip_id))
            trip = await self._store.accept(trip_id, driver_id, settlement=settlement)
            self._driver_index.update_driver_status(driver_id, ON_TRIP)

        record_liquidation(settlement, stage="settlement")
        with log_trip_context(trip_id, driver_id=driver_id):
            logger.info(f"Driver {driver_id} accepted trip at ${settlement.input.gross_usd}")
        return trip

    def _settle(self, trip: Trip) -> LiquidationResult:
        settlement = compute_liquidation(
            trip.service_id,
            trip.distance_km,
            self._rate_provider.current(),
            catalog=self._catalog,
            rates=self._rates,
        )
        if not settlement.meta.valid:
            logger.warning(
                f"Settlement for trip {trip.trip_id} does not reconcile "
                f"(delta {settlement.meta.reconciliation_delta}), keeping it for audit"
            )
        return settlement

    async def reject_ride(self, trip_id: str, driver_id: str) -> Trip:
        trip = await self._store.reject(trip_id, driver_id)
        with log_trip_context(trip_id, driver_id=driver_id):
            logger.info(f"Driver {driver_id} rejected trip")
        return trip

    async def cancel_ride(
        self, trip_id: str, by: CancellationActor, reason: str | None = None
    ) -> Trip:
        def apply(trip: Trip) -> None:
            trip.cancel(by=by, reason=reason)

        trip = await self._store.update(trip_id, apply)
        if trip.driver_id:
            self._release_driver(trip.driver_id)
        with log_trip_context(trip_id):
            logger.info(f"Trip cancelled by {by}: {reason or 'no reason given'}")
        return trip

    async def start_ride(self, trip_id: str, driver_id: str) -> Trip:
        def apply(trip: Trip) -> None:
            self._require_driver(trip, driver_id)
            trip.transition_to(TripStatus.IN_PROGRESS)

        return await self._store.update(trip_id, apply)

    async def update_progress(
        self,
        trip_id: str,
        progress: float | None = None,
        eta_minutes: float | None = None,
        heading: float | None = None,
    ) -> Trip:
        """Record tracking data for an accepted or in-progress trip."""
        if progress is not None and not 0 <= progress <= 100:
            raise ValidationError(f"Progress must be between 0 and 100, got {progress}")
        if eta_minutes is not None and eta_minutes < 0:
            raise ValidationError(f"ETA must not be negative, got {eta_minutes}")

        def apply(trip: Trip) -> None:
            if trip.status not in (TripStatus.ACCEPTED, TripStatus.IN_PROGRESS):
                raise StateError(
                    f"Trip {trip.trip_id} is {trip.status.value}, not being tracked",
                    details={"trip_id": trip.trip_id},
                )
            if progress is not None:
                trip.current_progress = progress
            if eta_minutes is not None:
                trip.eta_minutes = eta_minutes
            if heading is not None:
                trip.heading = heading % 360

        return await self._store.update(trip_id, apply)

    async def complete_ride(self, trip_id: str, driver_id: str) -> Trip:
        def apply(trip: Trip) -> None:
            self._require_driver(trip, driver_id)
            trip.transition_to(TripStatus.COMPLETED)

        trip = await self._store.update(trip_id, apply)
        self._release_driver(driver_id)
        with log_trip_context(trip_id, driver_id=driver_id):
            logger.info(f"Trip completed, fare ${trip.price_usd}")
        return trip

    async def update_driver_location(
        self,
        driver_id: str,
        lat: float,
        lng: float,
        vehicle_type: VehicleType | None = None,
        available: bool = True,
    ) -> DriverAvailability:
        """Record a driver's position and whether they take new trips.

        A driver with an active trip stays ``on_trip`` whatever they report.

        Raises:
            ValidationError: first report for this driver without a vehicle type.
        """
        vehicle = vehicle_type or self._driver_index.vehicle_type_of(driver_id)
        if vehicle is None:
            raise ValidationError(
                f"Driver {driver_id} is not registered, vehicle_type is required",
                details={"driver_id": driver_id},
            )

        async with self._driver_locks[driver_id]:
            if await self._active_trip_as_driver(driver_id) is not None:
                status = ON_TRIP
            else:
                status = AVAILABLE if available else OFFLINE
            self._driver_index.add_driver(driver_id, lat, lng, status, vehicle)

        logger.debug(f"Driver {driver_id} at ({lat}, {lng}) is {status}")
        return DriverAvailability(
            driver_id=driver_id, lat=lat, lng=lng, vehicle_type=vehicle, status=status
        )

    async def _active_trip_as_driver(self, driver_id: str) -> Trip | None:
        for trip in await self._store.list_for_user(driver_id):
            if trip.driver_id == driver_id and trip.status in ACTIVE_STATUSES:
                return trip
        return None

    def _release_driver(self, driver_id: str) -> None:
        if self._driver_index.status_of(driver_id) == ON_TRIP:
            self._driver_index.update_driver_status(driver_id, AVAILABLE)

    async def post_chat_message(
        self, trip_id: str, sender_role: SenderRole, sender_name: str, text: str
    ) -> ChatMessage:
        message = ChatMessage(
            id=str(uuid.uuid4()),
            sender_role=sender_role,
            sender_name=sender_name,
            text=text,
        )

        def apply(trip: Trip) -> None:
            trip.add_chat_message(message)

        await self._store.update(trip_id, apply)
        return message

    async def get_trip(self, trip_id: str) -> Trip:
        return await self._store.get(trip_id)

    async def trip_history(self, user_id: str) -> list[Trip]:
        return await self._store.list_for_user(user_id)

    async def active_trip(self, user_id: str) -> Trip | None:
        return await self._store.active_for_user(user_id)

    @staticmethod
    def _require_driver(trip: Trip, driver_id: str) -> None:
        if trip.driver_id != driver_id:
            raise StateError(
                f"Driver {driver_id} is not assigned to trip {trip.trip_id}",
                details={"trip_id": trip.trip_id, "driver_id": driver_id},
            )
