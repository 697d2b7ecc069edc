"""Tests for the bump-and-reprice risk engine."""

import numpy as np
import pytest

from conftest import EUR_USD, SPOT, VAL_DATE, make_rates
from fxtree import (
    ConfigurationError,
    CurrencyAmount,
    CurveSensitivities,
    CurveSensitivity,
    ImmutableRatesProvider,
    InterpolatedZeroRateCurve,
    MultiCurrencyAmount,
)
from fxtree.risk import curve_parameter_sensitivities, numerical_spot_delta


def _zero_coupon(rates):
    """100 USD paid in one year."""
    return MultiCurrencyAmount.of(CurrencyAmount("USD", 100.0 * rates.discount_factors("USD").discount_factor(1.0)))


class TestCurveSensitivities:
    def test_flat_curve(self):
        rates = make_rates(usd_rate=0.02)
        sens = curve_parameter_sensitivities(_zero_coupon, rates, ["USD"])
        usd = sens.find("USD", "USD")
        assert usd.curve_name == "USD-DSC"
        assert usd.sensitivity[0] == pytest.approx(-100.0 * np.exp(-0.02), rel=1e-4)

    def test_only_the_touched_node_moves(self):
        curve = InterpolatedZeroRateCurve("USD-DSC", [0.5, 1.0, 2.0], [0.01, 0.02, 0.03])
        rates = ImmutableRatesProvider(VAL_DATE, {"USD": curve})
        sens = curve_parameter_sensitivities(_zero_coupon, rates, ["USD"]).find("USD")
        assert sens.sensitivity[0] == 0.0
        assert sens.sensitivity[2] == 0.0
        assert sens.sensitivity[1] < 0.0

    def test_unrelated_curve_is_zero(self):
        rates = make_rates(usd_rate=0.02)
        sens = curve_parameter_sensitivities(_zero_coupon, rates, ["EUR", "USD"])
        assert sens.find("EUR", "USD").sensitivity[0] == 0.0

    def test_threaded(self):
        curve = InterpolatedZeroRateCurve("USD-DSC", [0.5, 1.0, 2.0], [0.01, 0.02, 0.03])
        rates = ImmutableRatesProvider(VAL_DATE, {"USD": curve})
        seq = curve_parameter_sensitivities(_zero_coupon, rates, ["USD"])
        par = curve_parameter_sensitivities(_zero_coupon, rates, ["USD"], max_workers=3)
        assert np.array_equal(seq.find("USD").sensitivity, par.find("USD").sensitivity)

    def test_missing_curve(self):
        with pytest.raises(ConfigurationError):
            curve_parameter_sensitivities(_zero_coupon, make_rates(), ["GBP"])

    def test_bad_shift(self):
        with pytest.raises(ConfigurationError):
            curve_parameter_sensitivities(_zero_coupon, make_rates(), ["USD"], shift=0.0)


class TestSensitivityContainers:
    def test_combine_total_and_scale(self):
        a = CurveSensitivity("USD-DSC", "USD", "USD", [1.0, 2.0])
        b = CurveSensitivity("USD-DSC", "USD", "USD", [0.5, 0.5])
        c = CurveSensitivity("EUR-DSC", "EUR", "USD", [4.0])
        combined = CurveSensitivities((a, c)).combined_with(CurveSensitivities((b,)))
        assert len(combined) == 2
        assert np.array_equal(combined.find("USD").sensitivity, [1.5, 2.5])
        assert combined.total().amount("USD").amount == pytest.approx(8.0)
        assert combined.multiplied_by(1e-4).total().amount("USD").amount == pytest.approx(8e-4)

    def test_combine_shape_mismatch(self):
        a = CurveSensitivity("USD-DSC", "USD", "USD", [1.0, 2.0])
        b = CurveSensitivity("USD-DSC", "USD", "USD", [1.0])
        with pytest.raises(ConfigurationError):
            CurveSensitivities((a,)).combined_with(CurveSensitivities((b,)))


class TestSpotDelta:
    def test_quadratic_in_spot(self):
        rates = make_rates()
        delta = numerical_spot_delta(lambda r: r.fx_rate(EUR_USD) ** 2, rates, EUR_USD)
        assert delta == pytest.approx(2.0 * SPOT, rel=1e-10)

    def test_only_spot_moves(self):
        rates = make_rates(usd_rate=0.02)
        seen = []

        def price(r):
            seen.append(r)
            return r.discount_factors("USD").discount_factor(1.0)

        assert numerical_spot_delta(price, rates, EUR_USD) == 0.0
        assert [r.fx_rate(EUR_USD) for r in seen] == pytest.approx([SPOT * 1.0001, SPOT * 0.9999])

    def test_bad_bump(self):
        with pytest.raises(ConfigurationError):
            numerical_spot_delta(lambda r: 0.0, make_rates(), EUR_USD, bump_pct=0.0)
