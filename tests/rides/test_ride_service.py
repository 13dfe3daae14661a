"""Tests for the ride lifecycle service."""

import asyncio
import logging
from unittest.mock import AsyncMock, Mock

import pytest

from panaride.core.exceptions import (
    OfferUnavailableError,
    StateError,
    UnknownServiceError,
    ValidationError,
)
from panaride.matching import (
    DriverMatcher,
    GeospatialDriverLocator,
    MatchOutcome,
    NotificationDispatch,
)
from panaride.pricing.catalog import VehicleType
from panaride.pricing.exchange_rate import ExchangeRateProvider
from panaride.rides import RideService
from panaride.settings import ExchangeRateSettings, MatchingSettings
from panaride.store import InMemoryTripStore
from panaride.trip import Location, RideBeneficiary, TripStatus

PICKUP = Location(address="Av. Lara, Barquisimeto", lat=10.0647, lng=-69.3451)
DROPOFF = Location(address="Sambil Barquisimeto", lat=10.0702, lng=-69.3120)


@pytest.fixture
def rate_provider():
    return ExchangeRateProvider([], settings=ExchangeRateSettings())


@pytest.fixture
def rides(store, matcher, rate_provider, driver_index):
    return RideService(store, matcher, rate_provider, driver_index=driver_index)


async def request(rides, service_id="el_pana", distance_km=8.0, **kwargs):
    kwargs.setdefault("auto_match", False)
    return await rides.request_ride(
        passenger_id="passenger_1",
        origin=PICKUP,
        destination=DROPOFF,
        service_id=service_id,
        distance_km=distance_km,
        **kwargs,
    )


async def accepted_trip(rides, store, driver_id="driver_1"):
    trip = await request(rides)
    await store.offer(trip.trip_id, [driver_id], 1.0)
    return await rides.accept_ride(trip.trip_id, driver_id)


@pytest.mark.unit
class TestQuote:
    def test_quote_uses_current_rate(self, rides):
        quote = rides.quote("mototaxi", 8)
        assert quote.usd == 2.39
        assert quote.local == 842.98
        assert quote.liquidation.meta.exchange_rate == 352.71

    def test_unknown_service(self, rides):
        with pytest.raises(UnknownServiceError):
            rides.quote("limousine", 8)


@pytest.mark.unit
class TestRequestRide:
    async def test_persists_requested_trip(self, rides, store):
        trip = await request(rides, service_id="mototaxi")

        stored = await store.get(trip.trip_id)
        assert stored.status == TripStatus.REQUESTED
        assert stored.passenger_id == "passenger_1"
        assert stored.vehicle_type == VehicleType.MOTO
        assert stored.price_usd == 2.39
        assert stored.price_local == 842.98
        assert stored.liquidation.input.gross_usd == 2.39

    async def test_unknown_service_creates_nothing(self, rides, store):
        with pytest.raises(UnknownServiceError):
            await request(rides, service_id="limousine")
        assert await store.list_for_user("passenger_1") == []

    async def test_auto_match_runs_in_background(self, rides, store):
        trip = await request(rides, auto_match=True)

        await rides.wait_for_matching()

        assert (await store.get(trip.trip_id)).status == TripStatus.UNASSIGNED

    async def test_beneficiary_recorded(self, rides):
        beneficiary = RideBeneficiary(name="Abuela Rosa", relationship="FAMILY")
        trip = await request(rides, beneficiary=beneficiary)
        assert trip.beneficiary.name == "Abuela Rosa"

    async def test_matching_failure_is_logged(self, store, rate_provider, caplog):
        matcher = Mock()
        matcher.match = AsyncMock(side_effect=RuntimeError("matcher crashed"))
        rides = RideService(store, matcher, rate_provider)

        with caplog.at_level(logging.ERROR):
            await request(rides, auto_match=True)
            await rides.wait_for_matching()

        assert "matcher crashed" in caplog.text

    async def test_shutdown_cancels_matching(self, store, driver_index, rate_provider):
        driver_index.add_driver("d_near", 10.0692, -69.3451, "available", VehicleType.CAR)
        matcher = DriverMatcher(
            store,
            GeospatialDriverLocator(driver_index),
            NotificationDispatch(store),
            MatchingSettings(poll_interval_seconds=5.0, tier_wait_seconds=60.0),
        )
        rides = RideService(store, matcher, rate_provider)
        trip = await request(rides, auto_match=True)
        await asyncio.sleep(0.01)

        await rides.shutdown()

        stored = await store.get(trip.trip_id)
        assert stored.status == TripStatus.REQUESTED
        assert stored.offered_driver_ids == ["d_near"]


@pytest.mark.unit
@pytest.mark.critical
class TestAcceptRide:
    async def test_settlement_uses_rate_at_acceptance(self, rides, store, rate_provider):
        trip = await request(rides)
        await store.offer(trip.trip_id, ["driver_1"], 1.0)
        rate_provider.set_manual_override(400.0)

        accepted = await rides.accept_ride(trip.trip_id, "driver_1")

        assert accepted.status == TripStatus.ACCEPTED
        assert accepted.driver_id == "driver_1"
        assert accepted.liquidation.meta.exchange_rate == 352.71
        assert accepted.settlement.meta.exchange_rate == 400.0
        assert accepted.settlement.input.gross_usd == trip.liquidation.input.gross_usd
        stored = await store.get(trip.trip_id)
        assert stored.settlement.meta.exchange_rate == 400.0
        assert stored.liquidation.same_figures_as(trip.liquidation)

    async def test_accept_without_offer(self, rides):
        trip = await request(rides)
        with pytest.raises(OfferUnavailableError):
            await rides.accept_ride(trip.trip_id, "driver_1")

    async def test_reject_then_accept_fails(self, rides, store):
        trip = await request(rides)
        await store.offer(trip.trip_id, ["driver_1", "driver_2"], 1.0)

        rejected = await rides.reject_ride(trip.trip_id, "driver_1")

        assert rejected.rejected_driver_ids == ["driver_1"]
        with pytest.raises(OfferUnavailableError):
            await rides.accept_ride(trip.trip_id, "driver_1")

    async def test_matching_then_driver_accepts(self, rides, store, driver_index, clock):
        driver_index.add_driver("d_near", 10.0692, -69.3451, "available", VehicleType.CAR)
        trip = await request(rides)

        async def driver_app_accepts():
            await rides.accept_ride(trip.trip_id, "d_near")

        clock.at(3.0, driver_app_accepts)
        result = await rides.match(trip.trip_id)

        assert result.outcome == MatchOutcome.MATCHED
        assert (await store.get(trip.trip_id)).settlement is not None
        assert driver_index.status_of("d_near") == "on_trip"


@pytest.mark.unit
class TestRideProgress:
    async def test_full_lifecycle(self, rides, store):
        trip = await accepted_trip(rides, store)

        await rides.start_ride(trip.trip_id, "driver_1")
        tracked = await rides.update_progress(
            trip.trip_id, progress=40.0, eta_minutes=6.5, heading=370.0
        )
        completed = await rides.complete_ride(trip.trip_id, "driver_1")

        assert tracked.current_progress == 40.0
        assert tracked.eta_minutes == 6.5
        assert tracked.heading == 10.0
        assert completed.status == TripStatus.COMPLETED
        assert completed.current_progress == 100.0

    async def test_wrong_driver_cannot_start(self, rides, store):
        trip = await accepted_trip(rides, store)
        with pytest.raises(StateError):
            await rides.start_ride(trip.trip_id, "driver_2")

    async def test_cannot_complete_before_start(self, rides, store):
        trip = await accepted_trip(rides, store)
        with pytest.raises(StateError):
            await rides.complete_ride(trip.trip_id, "driver_1")

    @pytest.mark.parametrize("kwargs", [{"progress": 101.0}, {"eta_minutes": -1.0}])
    async def test_invalid_tracking_data(self, rides, store, kwargs):
        trip = await accepted_trip(rides, store)
        with pytest.raises(ValidationError):
            await rides.update_progress(trip.trip_id, **kwargs)

    async def test_progress_requires_assigned_trip(self, rides):
        trip = await request(rides)
        with pytest.raises(StateError):
            await rides.update_progress(trip.trip_id, progress=10.0)


@pytest.mark.unit
class TestCancelAndChat:
    async def test_cancel(self, rides):
        trip = await request(rides)

        cancelled = await rides.cancel_ride(trip.trip_id, by="rider", reason="wrong address")

        assert cancelled.status == TripStatus.CANCELLED
        assert cancelled.cancellation_reason == "wrong address"

    async def test_cannot_cancel_completed(self, rides, store):
        trip = await accepted_trip(rides, store)
        await rides.start_ride(trip.trip_id, "driver_1")
        await rides.complete_ride(trip.trip_id, "driver_1")

        with pytest.raises(StateError):
            await rides.cancel_ride(trip.trip_id, by="rider")

    async def test_chat(self, rides, store):
        trip = await accepted_trip(rides, store)

        message = await rides.post_chat_message(trip.trip_id, "DRIVER", "Luis", "Llegando en 2")

        stored = await store.get(trip.trip_id)
        assert [m.id for m in stored.chat_log] == [message.id]
        assert stored.chat_log[0].text == "Llegando en 2"

    async def test_chat_closed_after_cancel(self, rides):
        trip = await request(rides)
        await rides.cancel_ride(trip.trip_id, by="rider")
        with pytest.raises(StateError):
            await rides.post_chat_message(trip.trip_id, "PASSENGER", "Ana", "Hola?")


@pytest.mark.unit
class TestHistory:
    async def test_history_and_active_trip(self, rides, store):
        first = await request(rides)
        await rides.cancel_ride(first.trip_id, by="rider")
        second = await request(rides)

        history = await rides.trip_history("passenger_1")
        active = await rides.active_trip("passenger_1")

        assert {t.trip_id for t in history} == {first.trip_id, second.trip_id}
        assert active.trip_id == second.trip_id

    async def test_driver_history(self, rides, store):
        trip = await accepted_trip(rides, store, driver_id="driver_7")
        assert [t.trip_id for t in await rides.trip_history("driver_7")] == [trip.trip_id]


class CancelledBeforeAcceptStore(InMemoryTripStore):
    """Passenger cancels after the settlement is priced but before the accept lands."""

    async def accept(self, trip_id, driver_id, settlement=None):
        def cancel(trip):
            trip.cancel(by="rider", reason="changed plans")

        await self.update(trip_id, cancel)
        return await super().accept(trip_id, driver_id, settlement=settlement)


@pytest.mark.unit
@pytest.mark.critical
class TestSettlementAtomicity:
    async def test_cancel_between_pricing_and_accept_leaves_no_settlement(
        self, matcher, rate_provider, driver_index
    ):
        store = CancelledBeforeAcceptStore()
        rides = RideService(store, matcher, rate_provider, driver_index=driver_index)
        driver_index.add_driver("driver_1", 10.0692, -69.3451, "available", VehicleType.CAR)
        trip = await request(rides)
        await store.offer(trip.trip_id, ["driver_1"], 1.0)

        with pytest.raises(OfferUnavailableError):
            await rides.accept_ride(trip.trip_id, "driver_1")

        stored = await store.get(trip.trip_id)
        assert stored.status == TripStatus.CANCELLED
        assert stored.settlement is None
        assert stored.liquidation.same_figures_as(trip.liquidation)
        assert driver_index.status_of("driver_1") == "available"


@pytest.mark.unit
@pytest.mark.critical
class TestDriverAvailability:
    async def test_first_report_requires_vehicle_type(self, rides):
        with pytest.raises(ValidationError):
            await rides.update_driver_location("driver_1", 10.0692, -69.3451)

    async def test_report_makes_driver_matchable(self, rides, driver_index):
        reported = await rides.update_driver_location(
            "driver_1", 10.0692, -69.3451, vehicle_type=VehicleType.CAR
        )

        assert reported.status == "available"
        found = driver_index.find_nearest_drivers(10.0647, -69.3451, 1.0)
        assert [d for d, _ in found] == ["driver_1"]

    async def test_offline_driver_not_matchable(self, rides, driver_index):
        await rides.update_driver_location(
            "driver_1", 10.0692, -69.3451, vehicle_type=VehicleType.CAR
        )

        reported = await rides.update_driver_location(
            "driver_1", 10.0700, -69.3451, available=False
        )

        assert reported.status == "offline"
        assert reported.vehicle_type == VehicleType.CAR
        assert driver_index.find_nearest_drivers(10.0647, -69.3451, 1.0) == []

    async def test_accept_marks_busy_until_complete(self, rides, store, driver_index):
        await rides.update_driver_location(
            "driver_1", 10.0692, -69.3451, vehicle_type=VehicleType.CAR
        )
        trip = await accepted_trip(rides, store)
        assert driver_index.status_of("driver_1") == "on_trip"

        reported = await rides.update_driver_location("driver_1", 10.0700, -69.3400)
        assert reported.status == "on_trip"

        await rides.start_ride(trip.trip_id, "driver_1")
        await rides.complete_ride(trip.trip_id, "driver_1")
        assert driver_index.status_of("driver_1") == "available"

    async def test_cancel_releases_driver(self, rides, store, driver_index):
        await rides.update_driver_location(
            "driver_1", 10.0692, -69.3451, vehicle_type=VehicleType.CAR
        )
        trip = await accepted_trip(rides, store)

        await rides.cancel_ride(trip.trip_id, by="driver", reason="flat tyre")

        assert driver_index.status_of("driver_1") == "available"

    async def test_driver_with_active_trip_cannot_accept_another(self, rides, store):
        first = await accepted_trip(rides, store)
        second = await request(rides)
        await store.offer(second.trip_id, ["driver_1"], 1.0)

        with pytest.raises(OfferUnavailableError):
            await rides.accept_ride(second.trip_id, "driver_1")

        assert (await store.get(first.trip_id)).driver_id == "driver_1"
        assert (await store.get(second.trip_id)).status == TripStatus.REQUESTED

    async def test_concurrent_accepts_across_trips(self, rides, store):
        trip_a = await request(rides)
        trip_b = await request(rides)
        for trip in (trip_a, trip_b):
            await store.offer(trip.trip_id, ["driver_1"], 1.0)

        results = await asyncio.gather(
            rides.accept_ride(trip_a.trip_id, "driver_1"),
            rides.accept_ride(trip_b.trip_id, "driver_1"),
            return_exceptions=True,
        )

        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, OfferUnavailableError) for r in results) == 1

    async def test_busy_driver_not_offered_next_trip(self, rides, store, driver_index):
        await rides.update_driver_location(
            "d_near", 10.0692, -69.3451, vehicle_type=VehicleType.CAR
        )
        await accepted_trip(rides, store, driver_id="d_near")
        second = await request(rides)

        result = await rides.match(second.trip_id)

        assert result.outcome == MatchOutcome.NO_DRIVERS_AVAILABLE
        assert "d_near" not in (await store.get(second.trip_id)).offered_driver_ids

