"""Prometheus metrics exporter.

Counters are recorded at the service boundary, never inside the
liquidation engine itself, which stays free of side effects.
"""

from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

if TYPE_CHECKING:
    from panaride.matching.protocol import MatchResult
    from panaride.pricing.exchange_rate import ExchangeRate
    from panaride.pricing.liquidation import LiquidationResult

# Use a separate registry to avoid default Python metrics
REGISTRY = CollectorRegistry()

liquidations_total = Counter(
    "panaride_liquidations_total",
    "Fare liquidations computed, by service tier and stage",
    ["service_id", "stage"],
    registry=REGISTRY,
)

liquidations_invalid_total = Counter(
    "panaride_liquidations_invalid_total",
    "Liquidations whose parts did not reconcile with the gross fare",
    ["service_id", "stage"],
    registry=REGISTRY,
)

match_outcomes_total = Counter(
    "panaride_match_outcomes_total",
    "Driver matching processes by terminal outcome",
    ["outcome"],
    registry=REGISTRY,
)

match_radius_km = Histogram(
    "panaride_match_radius_km",
    "Search radius at which a driver accepted",
    buckets=(0.5, 1.0, 2.0, 3.0, 5.0, 8.0, 13.0),
    registry=REGISTRY,
)

match_duration_seconds = Histogram(
    "panaride_match_duration_seconds",
    "Time from the start of matching to its terminal outcome",
    buckets=(1, 2, 5, 10, 15, 30, 45, 60, 90, 120),
    registry=REGISTRY,
)

exchange_rate = Gauge(
    "panaride_exchange_rate",
    "Current local-currency units per USD",
    registry=REGISTRY,
)

exchange_rate_refresh_failures_total = Counter(
    "panaride_exchange_rate_refresh_failures_total",
    "Exchange rate source failures",
    ["source"],
    registry=REGISTRY,
)


def record_liquidation(result: "LiquidationResult", stage: str) -> None:
    service_id = result.input.service_id
    liquidations_total.labels(service_id=service_id, stage=stage).inc()
    if not result.meta.valid:
        liquidations_invalid_total.labels(service_id=service_id, stage=stage).inc()


def record_match_result(result: "MatchResult") -> None:
    match_outcomes_total.labels(outcome=result.outcome.value).inc()
    match_duration_seconds.observe(result.elapsed_seconds)
    if result.radius_km is not None and result.driver_id is not None:
        match_radius_km.observe(result.radius_km)


def record_exchange_rate(rate: "ExchangeRate") -> None:
    exchange_rate.set(rate.rate)


def record_rate_refresh_failure(source: str) -> None:
    exchange_rate_refresh_failures_total.labels(source=source).inc()


def generate_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)
