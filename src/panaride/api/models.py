"""Request and response bodies for the HTTP API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from panaride.pricing.catalog import VehicleType
from panaride.trip import CancellationActor, Location, RideBeneficiary, SenderRole


class QuoteRequest(BaseModel):
    service_id: str
    distance_km: float = Field(ge=0)


class TripCreateRequest(BaseModel):
    passenger_id: str = Field(min_length=1)
    origin: Location
    destination: Location
    service_id: str
    distance_km: float = Field(ge=0)
    beneficiary: RideBeneficiary | None = None
    auto_match: bool = True


class DriverActionRequest(BaseModel):
    driver_id: str = Field(min_length=1)


class DriverLocationRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    vehicle_type: VehicleType | None = None
    available: bool = True


class CancelRequest(BaseModel):
    by: CancellationActor = "rider"
    reason: str | None = None


class ProgressRequest(BaseModel):
    progress: float | None = Field(default=None, ge=0, le=100)
    eta_minutes: float | None = Field(default=None, ge=0)
    heading: float | None = None


class ChatRequest(BaseModel):
    sender_role: SenderRole
    sender_name: str = Field(min_length=1)
    text: str = Field(min_length=1, max_length=2000)


class ExchangeRateResponse(BaseModel):
    rate: float
    source: str
    updated_at: datetime
    is_fresh: bool
    age_hours: float


class OverrideRequest(BaseModel):
    rate: float = Field(gt=0)
    valid_hours: float = Field(default=24.0, gt=0, le=24 * 7)


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    exchange_rate_source: str
    exchange_rate_fresh: bool
