from .catalog import ServiceCatalog, ServiceConfig, VehicleType, load_catalog
from .liquidation import (
    FareQuote,
    LiquidationRates,
    LiquidationResult,
    calculate_price,
    compute_liquidation,
)
from .rounding import round2, round4

__all__ = [
    "FareQuote",
    "LiquidationRates",
    "LiquidationResult",
    "ServiceCatalog",
    "ServiceConfig",
    "VehicleType",
    "calculate_price",
    "compute_liquidation",
    "load_catalog",
    "round2",
    "round4",
]
