from .service import RideService

__all__ = ["RideService"]
