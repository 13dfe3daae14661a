"""Tests for the fare liquidation engine."""

from datetime import UTC, datetime

import pytest

from panaride.core.exceptions import ConfigurationError, UnknownServiceError
from panaride.pricing.catalog import load_catalog
from panaride.pricing.exchange_rate import ExchangeRate
from panaride.pricing.liquidation import (
    LiquidationRates,
    calculate_price,
    compute_liquidation,
)

RATE = 352.71
CATALOG = load_catalog()


def parts_sum(result) -> float:
    return (
        result.driver.net_deposit_usd
        + result.platform.net_income_usd
        + result.platform.vat_liability_usd
        + result.driver.income_tax_withheld_usd
    )


@pytest.mark.unit
@pytest.mark.critical
class TestMototaxiExample:
    @pytest.fixture
    def result(self):
        return compute_liquidation("mototaxi", 8, RATE)

    def test_gross_fare(self, result):
        assert result.input.gross_usd == 2.39
        assert result.input.gross_local == 842.98

    def test_driver_breakdown(self, result):
        assert result.driver.gross_pay_usd == 2.2705
        assert result.driver.income_tax_withheld_usd == 0.0681
        assert result.driver.net_deposit_usd == 2.2024
        assert result.driver.net_deposit_local == 776.8

    def test_platform_breakdown(self, result):
        assert result.platform.gross_commission_usd == 0.1195
        assert result.platform.net_income_usd == 0.103
        assert result.platform.vat_liability_usd == 0.0165

    def test_tax_authority_totals(self, result):
        assert result.tax_authority.total_withholdings_usd == 0.0846

    def test_input_echo(self, result):
        assert result.input.service_id == "mototaxi"
        assert result.input.service_name == "Mototaxi"
        assert result.input.distance_km == 8
        assert result.meta.exchange_rate == RATE

    def test_reconciles(self, result):
        assert result.meta.valid is True
        assert abs(result.meta.reconciliation_delta) <= 0.02


@pytest.mark.unit
@pytest.mark.critical
class TestReconciliation:
    @pytest.mark.parametrize("service_id", CATALOG.ids())
    @pytest.mark.parametrize("extra_km", ["zero", "base", "base_plus", 100, 10000])
    @pytest.mark.parametrize("rate", [RATE, 0.01, 36.5, 1_000_000.0])
    def test_parts_add_back_to_gross(self, service_id, extra_km, rate):
        base = CATALOG.get(service_id).base_distance_km
        distance = {"zero": 0, "base": base, "base_plus": base + 0.1}.get(extra_km, extra_km)

        result = compute_liquidation(service_id, distance, rate)

        assert result.meta.valid is True
        assert abs(result.input.gross_usd - parts_sum(result)) <= 0.02

    def test_unbalanced_rates_are_flagged_not_raised(self):
        leaky = LiquidationRates(driver_share=0.90, platform_commission=0.05)
        result = compute_liquidation("el_pana", 0, RATE, rates=leaky)
        assert result.meta.valid is False
        assert result.meta.reconciliation_delta == pytest.approx(0.14)


@pytest.mark.unit
class TestGrossFare:
    @pytest.mark.parametrize("service_id", CATALOG.ids())
    def test_base_fare_up_to_base_distance(self, service_id):
        service = CATALOG.get(service_id)
        for distance in (0, service.base_distance_km / 2, service.base_distance_km):
            result = compute_liquidation(service_id, distance, RATE)
            assert result.input.gross_usd == service.base_gross_fare_usd

    @pytest.mark.parametrize("service_id", CATALOG.ids())
    def test_strictly_increasing_beyond_base(self, service_id):
        base = CATALOG.get(service_id).base_distance_km
        distances = [base + 0.1, base + 1, base + 5, base + 50]
        fares = [compute_liquidation(service_id, d, RATE).input.gross_usd for d in distances]
        assert fares == sorted(set(fares))

    def test_negative_distance_treated_as_zero(self):
        result = compute_liquidation("el_pana", -3, RATE)
        assert result.input.distance_km == 0
        assert result.input.gross_usd == 2.80


@pytest.mark.unit
class TestPurity:
    def test_same_inputs_same_figures(self):
        first = compute_liquidation("el_amigo", 12.5, RATE)
        second = compute_liquidation("el_amigo", 12.5, RATE)
        assert first.same_figures_as(second)

    def test_different_rate_changes_local_figures_only(self):
        low = compute_liquidation("el_amigo", 12.5, 300.0)
        high = compute_liquidation("el_amigo", 12.5, 400.0)
        assert low.input.gross_usd == high.input.gross_usd
        assert low.driver.net_deposit_usd == high.driver.net_deposit_usd
        assert low.input.gross_local < high.input.gross_local

    def test_accepts_exchange_rate_snapshot(self):
        snapshot = ExchangeRate(rate=RATE, updated_at=datetime.now(UTC), source="DolarAPI")
        from_snapshot = compute_liquidation("el_pana", 10, snapshot)
        from_float = compute_liquidation("el_pana", 10, RATE)
        assert from_snapshot.same_figures_as(from_float)

    def test_result_is_immutable(self):
        result = compute_liquidation("el_pana", 10, RATE)
        with pytest.raises(Exception):
            result.meta.valid = False


@pytest.mark.unit
@pytest.mark.critical
class TestUnknownService:
    @pytest.mark.parametrize("rate", [RATE, 1.0, 99999.0])
    def test_unknown_tier_raises_configuration_error(self, rate):
        with pytest.raises(ConfigurationError):
            compute_liquidation("nonexistent_tier", 10, rate)

    def test_error_names_the_tier(self):
        with pytest.raises(UnknownServiceError, match="nonexistent_tier"):
            compute_liquidation("nonexistent_tier", 10, RATE)


@pytest.mark.unit
class TestCalculatePrice:
    def test_quote_matches_liquidation(self):
        quote = calculate_price(8, RATE, service_id="mototaxi")
        assert quote.usd == 2.39
        assert quote.local == 842.98
        assert quote.liquidation.input.gross_usd == quote.usd

    def test_defaults_to_el_pana(self):
        quote = calculate_price(3, RATE)
        assert quote.liquidation.input.service_id == "el_pana"
        assert quote.usd == 2.80
