from fastapi import APIRouter, Depends

from panaride.api.auth import verify_api_key
from panaride.api.dependencies import RateProviderDep, RideServiceDep
from panaride.api.models import ExchangeRateResponse, OverrideRequest, QuoteRequest
from panaride.pricing.catalog import ServiceConfig
from panaride.pricing.liquidation import FareQuote

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/fares/quote", response_model=FareQuote)
def quote_fare(body: QuoteRequest, rides: RideServiceDep) -> FareQuote:
    return rides.quote(body.service_id, body.distance_km)


@router.get("/services", response_model=list[ServiceConfig])
def list_services(rides: RideServiceDep) -> list[ServiceConfig]:
    return list(rides.catalog)


def _rate_response(provider: RateProviderDep) -> ExchangeRateResponse:
    current = provider.current()
    return ExchangeRateResponse(
        rate=current.rate,
        source=current.source,
        updated_at=current.updated_at,
        is_fresh=current.is_fresh,
        age_hours=round(provider.rate_age_hours(), 2),
    )


@router.get("/exchange-rate", response_model=ExchangeRateResponse)
def get_exchange_rate(provider: RateProviderDep) -> ExchangeRateResponse:
    return _rate_response(provider)


@router.post("/exchange-rate/override", response_model=ExchangeRateResponse)
def override_exchange_rate(
    body: OverrideRequest, provider: RateProviderDep
) -> ExchangeRateResponse:
    """Pin the rate by hand, e.g. while the rate source is down."""
    provider.set_manual_override(body.rate, valid_hours=body.valid_hours)
    return _rate_response(provider)


@router.delete("/exchange-rate/override", response_model=ExchangeRateResponse)
def clear_exchange_rate_override(provider: RateProviderDep) -> ExchangeRateResponse:
    provider.clear_manual_override()
    return _rate_response(provider)
