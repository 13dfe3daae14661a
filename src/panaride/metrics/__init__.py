"""Prometheus metrics for pricing and matching."""

from .prometheus_exporter import (
    REGISTRY,
    generate_metrics,
    record_exchange_rate,
    record_liquidation,
    record_match_result,
    record_rate_refresh_failure,
)

__all__ = [
    "REGISTRY",
    "generate_metrics",
    "record_exchange_rate",
    "record_liquidation",
    "record_match_result",
    "record_rate_refresh_failure",
]
