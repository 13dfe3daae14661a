"""Service wiring and entry point."""

import logging

import uvicorn
from fastapi import FastAPI

from panaride.api import create_app
from panaride.matching import (
    DriverGeospatialIndex,
    DriverMatcher,
    GeospatialDriverLocator,
    NotificationDispatch,
)
from panaride.pricing.catalog import load_catalog
from panaride.pricing.exchange_rate import ExchangeRateProvider
from panaride.ride_logging import setup_logging
from panaride.rides import RideService
from panaride.settings import Settings, get_settings
from panaride.store import InMemoryTripStore, SqlTripStore, TripStore, init_database

logger = logging.getLogger(__name__)


def create_trip_store(settings: Settings) -> TripStore:
    if settings.storage.backend == "sqlite":
        logger.info(f"Using SQLite trip store at {settings.storage.sqlite_path}")
        return SqlTripStore(init_database(settings.storage.sqlite_path))
    return InMemoryTripStore()


def build_app(
    settings: Settings,
    driver_index: DriverGeospatialIndex | None = None,
) -> FastAPI:
    """Wire store, matcher, rate provider and ride service into an app."""
    store = create_trip_store(settings)
    catalog = load_catalog(settings.pricing.catalog_path)
    rate_provider = ExchangeRateProvider.from_settings(settings.exchange_rate)

    driver_index = driver_index or DriverGeospatialIndex()
    notifier = NotificationDispatch(store)
    locator = GeospatialDriverLocator(driver_index)
    matcher = DriverMatcher(store, locator, notifier, settings=settings.matching)

    rides = RideService(
        store,
        matcher,
        rate_provider,
        catalog=catalog,
        pricing=settings.pricing,
        driver_index=driver_index,
    )
    app = create_app(rides, rate_provider)
    app.state.driver_index = driver_index
    app.state.notifier = notifier
    return app


def main() -> None:
    settings = get_settings()
    setup_logging(
        level=settings.logging.level,
        json_output=settings.logging.format == "json",
        environment=settings.logging.environment,
    )
    if not settings.api.key:
        logger.warning("API_KEY is not set, every authenticated route will return 500")

    app = build_app(settings)
    logger.info(f"Starting PanaRide API on {settings.api.host}:{settings.api.port}")
    uvicorn.run(app, host=settings.api.host, port=settings.api.port, log_level="info")


if __name__ == "__main__":
    main()
