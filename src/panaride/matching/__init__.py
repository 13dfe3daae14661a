from .driver_geospatial_index import DriverGeospatialIndex
from .driver_locator import (
    DriverAvailability,
    DriverLocator,
    GeospatialDriverLocator,
    NearbyDriver,
)
from .notification_dispatch import NotificationDispatch
from .protocol import DriverMatcher, MatchingAttempt, MatchOutcome, MatchResult

__all__ = [
    "DriverAvailability",
    "DriverGeospatialIndex",
    "DriverLocator",
    "DriverMatcher",
    "GeospatialDriverLocator",
    "MatchOutcome",
    "MatchResult",
    "MatchingAttempt",
    "NearbyDriver",
    "NotificationDispatch",
]
