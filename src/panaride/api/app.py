"""FastAPI application factory for the ride API."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from panaride.api.models import HealthResponse
from panaride.api.routes import drivers, fares, trips
from panaride.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    PanaRideError,
    StateError,
    TransientError,
    UnknownServiceError,
    ValidationError,
)
from panaride.metrics import generate_metrics
from panaride.pricing.exchange_rate import ExchangeRateProvider
from panaride.rides.service import RideService

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[PanaRideError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnknownServiceError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StateError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (TransientError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(error: PanaRideError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    ride_service: RideService,
    rate_provider: ExchangeRateProvider,
    refresh_rates: bool = True,
) -> FastAPI:
    """Create FastAPI application with injected dependencies.

    Args:
        ride_service: RideService backing the trip routes
        rate_provider: ExchangeRateProvider used for quotes and settlement
        refresh_rates: run the periodic rate refresh while the app is up
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if refresh_rates:
            await rate_provider.start()
        yield
        await ride_service.shutdown()
        if refresh_rates:
            await rate_provider.stop()

    app = FastAPI(
        title="PanaRide API",
        version="0.1.0",
        description="Fare liquidation and driver matching for ride-hailing",
        lifespan=lifespan,
    )

    # Set here, not in lifespan, so TestClient without a context manager works
    app.state.ride_service = ride_service
    app.state.rate_provider = rate_provider

    @app.exception_handler(PanaRideError)
    async def domain_error_handler(request: Request, exc: PanaRideError) -> JSONResponse:
        code = status_for(exc)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=code,
            content={
                "detail": exc.message,
                "error": type(exc).__name__,
                "details": exc.details,
            },
        )

    app.include_router(fares.router, tags=["fares"])
    app.include_router(trips.router, tags=["trips"])
    app.include_router(drivers.router, tags=["drivers"])

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint for monitoring (unauthenticated for infrastructure)."""
        current = rate_provider.current()
        return HealthResponse(
            exchange_rate_source=current.source,
            exchange_rate_fresh=current.is_fresh,
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app
