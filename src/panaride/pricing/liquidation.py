"""Fare liquidation engine.

Splits a trip's gross fare (PFS) between driver, platform and tax
authority, in USD and in local currency (VES). Pure: the only input
that changes between calls is the exchange rate the caller passes in,
and the only non-deterministic output is ``meta.timestamp``.

Money flows for a gross fare G:

    driver gross      = G * driver_share                 (95%)
    income tax (ISLR) = driver gross * withholding        (3%, withheld)
    driver net        = driver gross - income tax
    platform gross    = G * platform_commission           (5%)
    platform net      = platform gross / (1 + vat_rate)   (VAT included, 16%)
    VAT (IVA)         = platform gross - platform net

Display figures are rounded to cents; breakdown figures to 4 decimals so
that the four parts still add back up to G.
"""

import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from panaride.pricing.catalog import ServiceCatalog, load_catalog
from panaride.pricing.rounding import round2, round4

if TYPE_CHECKING:
    from panaride.pricing.exchange_rate import ExchangeRate
    from panaride.settings import PricingSettings

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_ID = "el_pana"


class LiquidationRates(BaseModel):
    """Jurisdiction-specific split and tax constants."""

    model_config = ConfigDict(frozen=True)

    driver_share: float = 0.95
    platform_commission: float = 0.05
    income_tax_withholding: float = 0.03
    vat_rate: float = 0.16
    reconciliation_tolerance: float = 0.02

    @classmethod
    def from_settings(cls, settings: "PricingSettings") -> "LiquidationRates":
        return cls(
            driver_share=settings.driver_share,
            platform_commission=settings.platform_commission,
            income_tax_withholding=settings.income_tax_withholding,
            vat_rate=settings.vat_rate,
            reconciliation_tolerance=settings.reconciliation_tolerance,
        )


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True)


class LiquidationInput(_Section):
    service_id: str
    service_name: str
    distance_km: float
    gross_usd: float
    gross_local: float


class DriverBreakdown(_Section):
    gross_pay_usd: float
    income_tax_withheld_usd: float
    net_deposit_usd: float
    net_deposit_local: float


class PlatformBreakdown(_Section):
    gross_commission_usd: float
    net_income_usd: float
    net_income_local: float
    vat_liability_usd: float
    vat_liability_local: float


class TaxAuthorityTotals(_Section):
    total_withholdings_usd: float
    total_withholdings_local: float


class LiquidationMeta(_Section):
    exchange_rate: float
    valid: bool
    reconciliation_delta: float
    timestamp: datetime


class LiquidationResult(_Section):
    """Auditable snapshot of one fare split. Never mutated after creation."""

    input: LiquidationInput
    driver: DriverBreakdown
    platform: PlatformBreakdown
    tax_authority: TaxAuthorityTotals
    meta: LiquidationMeta

    def same_figures_as(self, other: "LiquidationResult") -> bool:
        """Compare everything except the timestamp."""
        exclude = {"meta": {"timestamp"}}
        return self.model_dump(exclude=exclude) == other.model_dump(exclude=exclude)


class FareQuote(BaseModel):
    """Price shown to the rider before confirming a trip."""

    usd: float = Field(ge=0)
    local: float
    liquidation: LiquidationResult


@lru_cache(maxsize=1)
def default_catalog() -> ServiceCatalog:
    return load_catalog()


def _rate_value(exchange_rate: "float | ExchangeRate") -> float:
    return float(getattr(exchange_rate, "rate", exchange_rate))


def compute_liquidation(
    service_id: str,
    distance_km: float,
    exchange_rate: "float | ExchangeRate",
    catalog: ServiceCatalog | None = None,
    rates: LiquidationRates | None = None,
) -> LiquidationResult:
    """Compute the driver/platform/tax split of a trip fare.

    Raises:
        UnknownServiceError: service_id is not in the catalog.
    """
    service = (catalog or default_catalog()).get(service_id)
    rates = rates or LiquidationRates()
    rate = _rate_value(exchange_rate)

    if distance_km < 0:
        logger.warning(f"Negative distance {distance_km} km for {service_id}, using 0")
        distance_km = 0.0

    gross_usd = round2(service.gross_fare_for(distance_km))
    gross_local = round2(gross_usd * rate)

    driver_gross = gross_usd * rates.driver_share
    income_tax = driver_gross * rates.income_tax_withholding
    driver_net = driver_gross - income_tax

    platform_gross = gross_usd * rates.platform_commission
    platform_net = platform_gross / (1 + rates.vat_rate)
    vat = platform_gross - platform_net

    driver = DriverBreakdown(
        gross_pay_usd=round4(driver_gross),
        income_tax_withheld_usd=round4(income_tax),
        net_deposit_usd=round4(driver_net),
        net_deposit_local=round2(driver_net * rate),
    )
    platform = PlatformBreakdown(
        gross_commission_usd=round4(platform_gross),
        net_income_usd=round4(platform_net),
        net_income_local=round2(platform_net * rate),
        vat_liability_usd=round4(vat),
        vat_liability_local=round2(vat * rate),
    )
    tax_authority = TaxAuthorityTotals(
        total_withholdings_usd=round4(income_tax + vat),
        total_withholdings_local=round2((income_tax + vat) * rate),
    )

    reconciled = (
        driver.net_deposit_usd
        + platform.net_income_usd
        + platform.vat_liability_usd
        + driver.income_tax_withheld_usd
    )
    delta = round4(gross_usd - reconciled)
    valid = abs(delta) <= rates.reconciliation_tolerance
    if not valid:
        logger.warning(
            f"Liquidation for {service_id} at {distance_km} km does not reconcile: "
            f"gross={gross_usd} parts={reconciled:.4f} delta={delta}"
        )

    return LiquidationResult(
        input=LiquidationInput(
            service_id=service.id,
            service_name=service.name,
            distance_km=distance_km,
            gross_usd=gross_usd,
            gross_local=gross_local,
        ),
        driver=driver,
        platform=platform,
        tax_authority=tax_authority,
        meta=LiquidationMeta(
            exchange_rate=rate,
            valid=valid,
            reconciliation_delta=delta,
            timestamp=datetime.now(UTC),
        ),
    )


def calculate_price(
    distance_km: float,
    exchange_rate: "float | ExchangeRate",
    service_id: str = DEFAULT_SERVICE_ID,
    catalog: ServiceCatalog | None = None,
    rates: LiquidationRates | None = None,
) -> FareQuote:
    """Quote a trip: gross fare in both currencies plus its liquidation."""
    liquidation = compute_liquidation(
        service_id, distance_km, exchange_rate, catalog=catalog, rates=rates
    )
    return FareQuote(
        usd=liquidation.input.gross_usd,
        local=liquidation.input.gross_local,
        liquidation=liquidation,
    )
