"""Trip state machine and models."""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from panaride.core.exceptions import StateError
from panaride.pricing.catalog import VehicleType
from panaride.pricing.liquidation import LiquidationResult

CancellationActor = Literal["rider", "driver", "system"]
SenderRole = Literal["PASSENGER", "DRIVER", "ADMIN"]


class TripStatus(str, Enum):
    """Trip lifecycle states."""

    REQUESTED = "REQUESTED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    UNASSIGNED = "UNASSIGNED"

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self]


VALID_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.REQUESTED: {
        TripStatus.ACCEPTED,
        TripStatus.UNASSIGNED,
        TripStatus.CANCELLED,
    },
    TripStatus.ACCEPTED: {TripStatus.IN_PROGRESS, TripStatus.CANCELLED},
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED, TripStatus.CANCELLED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
    TripStatus.UNASSIGNED: set(),
}

ACTIVE_STATUSES = frozenset(
    {TripStatus.REQUESTED, TripStatus.ACCEPTED, TripStatus.IN_PROGRESS}
)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Location(BaseModel):
    address: str
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if self.lat is None or self.lng is None:
            return None
        return (self.lat, self.lng)


class RideBeneficiary(BaseModel):
    """Third party riding on a trip booked by the passenger."""

    name: str = Field(min_length=1)
    phone: str | None = None
    relationship: Literal["FAMILY", "FRIEND", "OTHER"] | None = None


class ChatMessage(BaseModel):
    id: str
    sender_role: SenderRole
    sender_name: str
    text: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=utcnow)
    read: bool = False


class Trip(BaseModel):
    """Trip record with state machine logic."""

    trip_id: str
    passenger_id: str
    driver_id: str | None = None
    status: TripStatus = Field(default=TripStatus.REQUESTED)
    origin: Location
    destination: Location
    service_id: str
    vehicle_type: VehicleType
    price_usd: float = Field(ge=0)
    price_local: float = Field(ge=0)
    distance_km: float = Field(ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    # Quote snapshot taken at request time; settlement is computed on accept
    liquidation: LiquidationResult | None = None
    settlement: LiquidationResult | None = None
    # Ride progress, written by the GPS tracking collaborator
    current_progress: float | None = Field(default=None, ge=0, le=100)
    eta_minutes: float | None = Field(default=None, ge=0)
    heading: float | None = Field(default=None, ge=0, lt=360)
    beneficiary: RideBeneficiary | None = None
    chat_log: list[ChatMessage] = Field(default_factory=list)
    # Matching bookkeeping; offered_driver_ids is what driver clients poll
    offered_driver_ids: list[str] = Field(default_factory=list)
    rejected_driver_ids: list[str] = Field(default_factory=list)
    search_radius_km: float | None = None
    matching_started_at: datetime | None = None
    matching_completed_at: datetime | None = None
    accepted_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: CancellationActor | None = None
    cancellation_reason: str | None = None

    def transition_to(self, new_status: TripStatus) -> None:
        """Transition to a new status with validation."""
        if self.status.is_terminal:
            raise StateError(
                f"Cannot transition from terminal status {self.status.value}",
                details={"trip_id": self.trip_id, "status": self.status.value},
            )

        if new_status not in VALID_TRANSITIONS[self.status]:
            raise StateError(
                f"Invalid transition from {self.status.value} to {new_status.value}",
                details={"trip_id": self.trip_id, "status": self.status.value},
            )

        self.status = new_status
        now = utcnow()
        if new_status == TripStatus.ACCEPTED:
            self.accepted_at = now
        elif new_status == TripStatus.IN_PROGRESS:
            self.started_at = now
        elif new_status == TripStatus.COMPLETED:
            self.completed_at = now
            self.current_progress = 100.0
        elif new_status == TripStatus.UNASSIGNED:
            self.matching_completed_at = now
            self.offered_driver_ids = []

    def cancel(self, by: CancellationActor, reason: str | None = None) -> None:
        """Cancel the trip with metadata."""
        self.transition_to(TripStatus.CANCELLED)
        self.cancelled_by = by
        self.cancellation_reason = reason
        self.cancelled_at = utcnow()
        self.offered_driver_ids = []

    def add_chat_message(self, message: ChatMessage) -> None:
        if self.status.is_terminal:
            raise StateError(
                f"Trip {self.trip_id} is {self.status.value}; chat log is frozen",
                details={"trip_id": self.trip_id},
            )
        self.chat_log.append(message)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.passenger_id, self.driver_id)
