"""Shared market and product fixtures."""

from datetime import date, datetime, timedelta

import pytest

from fxtree import (
    CurrencyAmount,
    CurrencyPair,
    FlatFxVolatilities,
    ImmutableRatesProvider,
    InterpolatedZeroRateCurve,
    LongShort,
    ResolvedFxSingle,
    ResolvedFxVanillaOption,
)

EUR_USD = CurrencyPair("EUR", "USD")
VAL_DATE = date(2024, 1, 15)
VAL_DATE_TIME = datetime(2024, 1, 15)
# 365 days after the valuation date: exactly one year under Act/365F
EXPIRY = datetime(2025, 1, 14)
SPOT = 1.08
NOTIONAL = 1_000_000.0


def make_rates(spot=SPOT, eur_rate=0.0, usd_rate=0.0, valuation_date=VAL_DATE):
    return ImmutableRatesProvider(
        valuation_date,
        {
            "EUR": InterpolatedZeroRateCurve.flat("EUR-DSC", eur_rate),
            "USD": InterpolatedZeroRateCurve.flat("USD-DSC", usd_rate),
        },
        {EUR_USD: spot},
    )


def make_vols(level=0.10, valuation_date_time=VAL_DATE_TIME):
    return FlatFxVolatilities(EUR_USD, valuation_date_time, level)


def make_vanilla(strike, is_call=True, *, expiry=EXPIRY, notional=NOTIONAL, long_short=LongShort.LONG):
    base = CurrencyAmount("EUR", notional if is_call else -notional)
    underlying = ResolvedFxSingle.of(base, strike, expiry.date() + timedelta(days=2), "USD")
    return ResolvedFxVanillaOption(long_short, expiry, underlying)


@pytest.fixture
def rates():
    return make_rates()


@pytest.fixture
def carry_rates():
    return make_rates(eur_rate=0.01, usd_rate=0.03)


@pytest.fixture
def vols():
    return make_vols()
