"""Standardized exception hierarchy for the ride platform core."""

from typing import Any


class PanaRideError(Exception):
    """Base exception for all platform errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(PanaRideError):
    """Errors that may succeed on retry."""

    pass


class NetworkError(TransientError):
    """Network-related transient errors (timeout, connection refused)."""

    pass


class ServiceUnavailableError(TransientError):
    """External service temporarily unavailable (5xx responses)."""

    pass


class PersistenceError(TransientError):
    """Database or state persistence failed after retries."""

    pass


class DriverLookupError(TransientError):
    """Geo-proximity driver query failed."""

    pass


class PermanentError(PanaRideError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input or data format."""

    pass


class NotFoundError(PermanentError):
    """Requested entity does not exist."""

    pass


class StateError(PermanentError):
    """Invalid state transition."""

    pass


class OfferUnavailableError(StateError):
    """Trip can no longer be accepted by this driver."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass


class UnknownServiceError(ConfigurationError):
    """Service tier is not present in the catalog."""

    def __init__(self, service_id: str):
        super().__init__(
            f"Service {service_id} not found", details={"service_id": service_id}
        )
        self.service_id = service_id
