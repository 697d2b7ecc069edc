"""Tests for currencies, rates market and resolved products."""

from datetime import date, datetime

import numpy as np
import pytest

from conftest import EUR_USD, EXPIRY, VAL_DATE, make_rates, make_vanilla
from fxtree import (
    BarrierType,
    ConfigurationError,
    CurrencyAmount,
    CurrencyPair,
    DigitalPayoffType,
    ImmutableRatesProvider,
    InterpolatedZeroRateCurve,
    KnockType,
    LongShort,
    MultiCurrencyAmount,
    PutCall,
    ResolvedFxDigitalOption,
    ResolvedFxSingle,
    ResolvedFxSingleBarrierOption,
    ResolvedFxVanillaOption,
    SimpleConstantContinuousBarrier,
    ValueDerivatives,
)
from fxtree.market import year_fraction


class TestCurrencies:
    def test_parse_pair(self):
        pair = CurrencyPair.parse("eur/usd")
        assert pair == EUR_USD
        assert str(pair) == "EUR/USD"
        assert pair.inverse() == CurrencyPair("USD", "EUR")

    def test_invalid_pair(self):
        with pytest.raises(ConfigurationError):
            CurrencyPair("EUR", "EUR")
        with pytest.raises(ConfigurationError):
            CurrencyPair.parse("EURUSD")

    def test_multi_currency_amount(self):
        mca = MultiCurrencyAmount.of(CurrencyAmount("USD", 1.0), CurrencyAmount("EUR", 2.0))
        mca = mca.plus(CurrencyAmount("USD", 0.5))
        assert mca.amount("USD").amount == 1.5
        assert mca.amount("GBP").amount == 0.0
        assert set(mca.currencies) == {"USD", "EUR"}

    def test_amount_currency_mismatch(self):
        with pytest.raises(ConfigurationError):
            CurrencyAmount("USD", 1.0).plus(CurrencyAmount("EUR", 1.0))

    def test_value_derivatives(self):
        vd = ValueDerivatives.of(1.5, 0.25)
        assert vd.value == 1.5
        assert vd.derivative(0) == 0.25


class TestRatesMarket:
    def test_year_fraction(self):
        assert year_fraction(date(2024, 1, 15), date(2025, 1, 14)) == 1.0
        assert year_fraction(datetime(2024, 1, 15, 0), datetime(2024, 1, 15, 12)) == pytest.approx(0.5 / 365)

    def test_interpolated_curve(self):
        curve = InterpolatedZeroRateCurve("USD-DSC", [1.0, 2.0], [0.02, 0.04])
        assert curve.zero_rate(1.5) == pytest.approx(0.03)
        assert curve.zero_rate(5.0) == pytest.approx(0.04)
        assert curve.discount_factor(2.0) == pytest.approx(np.exp(-0.08))
        assert curve.parameter_count == 2

    def test_with_parameter_leaves_original(self):
        curve = InterpolatedZeroRateCurve("USD-DSC", [1.0, 2.0], [0.02, 0.04])
        bumped = curve.with_parameter(1, 0.05)
        assert bumped.get_parameter(1) == 0.05
        assert curve.get_parameter(1) == 0.04

    def test_curve_validation(self):
        with pytest.raises(ConfigurationError):
            InterpolatedZeroRateCurve("X", [2.0, 1.0], [0.01, 0.02])
        with pytest.raises(ConfigurationError):
            InterpolatedZeroRateCurve("X", [1.0], [0.01, 0.02])

    def test_fx_rate_and_inverse(self):
        rates = make_rates(spot=1.25)
        assert rates.fx_rate(EUR_USD) == 1.25
        assert rates.fx_rate(EUR_USD.inverse()) == pytest.approx(0.8)

    def test_with_fx_rate_replaces_inverse_quote(self):
        rates = make_rates(spot=1.25)
        moved = rates.with_fx_rate(EUR_USD.inverse(), 0.5)
        assert moved.fx_rate(EUR_USD) == pytest.approx(2.0)
        assert list(moved.fx_rates) == [EUR_USD.inverse()]
        assert rates.fx_rate(EUR_USD) == 1.25

    def test_missing_fx_and_curve(self):
        rates = make_rates()
        with pytest.raises(ConfigurationError):
            rates.fx_rate(CurrencyPair("GBP", "USD"))
        with pytest.raises(ConfigurationError):
            rates.discount_factors("GBP")

    def test_non_positive_fx_rejected(self):
        with pytest.raises(ConfigurationError):
            ImmutableRatesProvider(VAL_DATE, {}, {EUR_USD: 0.0})

    def test_with_discount_curve(self):
        rates = make_rates(usd_rate=0.01)
        replaced = rates.with_discount_curve("USD", InterpolatedZeroRateCurve.flat("USD-DSC", 0.05))
        assert replaced.discount_factors("USD").zero_rate(1.0) == 0.05
        assert rates.discount_factors("USD").zero_rate(1.0) == 0.01
        assert replaced.discount_factors("USD").discount_factor_at(date(2025, 1, 14)) == pytest.approx(np.exp(-0.05))


class TestProducts:
    def test_vanilla_call(self):
        option = make_vanilla(1.10)
        assert option.strike == pytest.approx(1.10)
        assert option.put_call is PutCall.CALL
        assert option.currency_pair == EUR_USD
        assert option.signed_notional == CurrencyAmount("USD", 1_000_000.0)

    def test_vanilla_short_put(self):
        option = make_vanilla(1.10, is_call=False, long_short=LongShort.SHORT)
        assert option.put_call is PutCall.PUT
        assert option.signed_notional.amount == -1_000_000.0

    def test_expiry_after_payment_rejected(self):
        underlying = ResolvedFxSingle.of(CurrencyAmount("EUR", 1.0), 1.1, date(2024, 6, 1), "USD")
        with pytest.raises(ConfigurationError):
            ResolvedFxVanillaOption(LongShort.LONG, datetime(2024, 6, 2), underlying)

    def test_exchange_needs_opposite_signs(self):
        with pytest.raises(ConfigurationError):
            ResolvedFxSingle(CurrencyAmount("EUR", 1.0), CurrencyAmount("USD", 1.1), date(2024, 6, 1))

    def test_digital_payment_must_be_counter(self):
        with pytest.raises(ConfigurationError):
            ResolvedFxDigitalOption(
                LongShort.LONG, EXPIRY, EUR_USD, 1.1, BarrierType.UP,
                DigitalPayoffType.EUROPEAN, CurrencyAmount("EUR", 1.0),
            )

    def test_digital_signed_notional(self):
        option = ResolvedFxDigitalOption(
            LongShort.SHORT, EXPIRY, EUR_USD, 1.1, BarrierType.UP,
            DigitalPayoffType.ONE_TOUCH, CurrencyAmount("USD", 5_000.0),
        )
        assert option.knock_type is KnockType.KNOCK_IN
        assert option.signed_notional == CurrencyAmount("USD", -5_000.0)

    def test_barrier_rebate_currency(self):
        barrier = SimpleConstantContinuousBarrier(BarrierType.UP, KnockType.KNOCK_OUT, 1.2)
        with pytest.raises(ConfigurationError):
            ResolvedFxSingleBarrierOption(make_vanilla(1.1), barrier, CurrencyAmount("GBP", 1.0))
        option = ResolvedFxSingleBarrierOption(make_vanilla(1.1), barrier, CurrencyAmount("EUR", 1.0))
        assert option.expiry == EXPIRY
        assert option.notional == 1_000_000.0

    def test_barrier_level_positive(self):
        with pytest.raises(ConfigurationError):
            SimpleConstantContinuousBarrier(BarrierType.DOWN, KnockType.KNOCK_IN, 0.0)
