"""FastAPI dependency injection providers."""

from typing import Annotated

from fastapi import Depends, Request

from panaride.pricing.exchange_rate import ExchangeRateProvider
from panaride.rides.service import RideService


def get_ride_service(request: Request) -> RideService:
    return request.app.state.ride_service


def get_rate_provider(request: Request) -> ExchangeRateProvider:
    return request.app.state.rate_provider


RideServiceDep = Annotated[RideService, Depends(get_ride_service)]
RateProviderDep = Annotated[ExchangeRateProvider, Depends(get_rate_provider)]
