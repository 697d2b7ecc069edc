"""In-memory rates market: discount curves and the rates provider.

Curves are parameterised by zero rates at fixed node times so that a
bump-and-reprice loop can shift one parameter at a time.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from types import MappingProxyType
from typing import Protocol, runtime_checkable

import numpy as np

from .core import CurrencyPair
from .errors import ConfigurationError

__all__ = [
    "DiscountCurve",
    "InterpolatedZeroRateCurve",
    "DiscountFactors",
    "RatesProvider",
    "ImmutableRatesProvider",
    "year_fraction",
]

DAYS_PER_YEAR = 365.0


def year_fraction(start: date | datetime, end: date | datetime) -> float:
    """Act/365F year fraction; datetimes keep their intraday part."""
    if isinstance(start, datetime) and isinstance(end, datetime):
        return (end - start).total_seconds() / (86400.0 * DAYS_PER_YEAR)
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    return (end - start).days / DAYS_PER_YEAR


@runtime_checkable
class DiscountCurve(Protocol):
    """Parameterised discount curve as seen by the pricer."""

    name: str

    @property
    def parameter_count(self) -> int: ...

    def get_parameter(self, index: int) -> float: ...

    def with_parameter(self, index: int, value: float) -> DiscountCurve: ...

    def discount_factor(self, t: float) -> float: ...

    def zero_rate(self, t: float) -> float: ...


@dataclass(frozen=True, eq=False)
class InterpolatedZeroRateCurve:
    """Continuously-compounded zero rates, linear in time, flat beyond the nodes.

    Parameters
    ----------
    name : str
        Curve name used to label sensitivities.
    times : array-like
        Strictly increasing node times in years.
    zero_rates : array-like
        Zero rate at each node; these are the curve parameters.
    """

    name: str
    times: np.ndarray
    zero_rates: np.ndarray

    def __post_init__(self):
        times = np.array(self.times, dtype=float).reshape(-1)
        rates = np.array(self.zero_rates, dtype=float).reshape(-1)
        if times.size == 0 or times.shape != rates.shape:
            raise ConfigurationError(
                f"curve {self.name!r} needs matching non-empty times and rates, "
                f"got {times.size} and {rates.size}"
            )
        if np.any(np.diff(times) <= 0):
            raise ConfigurationError(f"curve {self.name!r} node times must be strictly increasing")
        times.setflags(write=False)
        rates.setflags(write=False)
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "zero_rates", rates)

    @classmethod
    def flat(cls, name: str, rate: float) -> InterpolatedZeroRateCurve:
        """Single-parameter flat curve."""
        return cls(name, np.array([1.0]), np.array([rate]))

    @property
    def parameter_count(self) -> int:
        return int(self.zero_rates.size)

    def get_parameter(self, index: int) -> float:
        return float(self.zero_rates[index])

    def with_parameter(self, index: int, value: float) -> InterpolatedZeroRateCurve:
        rates = self.zero_rates.copy()
        rates[index] = value
        return replace(self, zero_rates=rates)

    def zero_rate(self, t: float) -> float:
        return float(np.interp(t, self.times, self.zero_rates))

    def discount_factor(self, t: float) -> float:
        return float(np.exp(-self.zero_rate(t) * t))


@dataclass(frozen=True)
class DiscountFactors:
    """Discount factors of one currency, queried by year fraction."""

    currency: str
    valuation_date: date
    curve: DiscountCurve

    def discount_factor(self, t: float) -> float:
        return self.curve.discount_factor(t)

    def discount_factor_at(self, when: date) -> float:
        return self.discount_factor(year_fraction(self.valuation_date, when))

    def zero_rate(self, t: float) -> float:
        return self.curve.zero_rate(t)


class RatesProvider(Protocol):
    """Read-only rates snapshot consumed by the pricers."""

    valuation_date: date

    @property
    def discount_curves(self) -> Mapping[str, DiscountCurve]: ...

    def fx_rate(self, pair: CurrencyPair) -> float: ...

    def discount_factors(self, currency: str) -> DiscountFactors: ...

    def with_discount_curve(self, currency: str, curve: DiscountCurve) -> RatesProvider: ...

    def with_fx_rate(self, pair: CurrencyPair, rate: float) -> RatesProvider: ...

    def relative_time(self, when: date) -> float: ...


@dataclass(frozen=True)
class ImmutableRatesProvider:
    """Rates snapshot holding one discount curve per currency and spot FX rates.

    ``fx_rates`` maps a pair to the number of counter units per base unit;
    the inverse pair is derived.
    """

    valuation_date: date
    discount_curves: Mapping[str, DiscountCurve] = field(default_factory=dict)
    fx_rates: Mapping[CurrencyPair, float] = field(default_factory=dict)

    def __post_init__(self):
        for pair, rate in self.fx_rates.items():
            if not rate > 0:
                raise ConfigurationError(f"FX rate for {pair} must be positive, got {rate}")
        object.__setattr__(self, "discount_curves", MappingProxyType(dict(self.discount_curves)))
        object.__setattr__(self, "fx_rates", MappingProxyType(dict(self.fx_rates)))

    def fx_rate(self, pair: CurrencyPair) -> float:
        if pair in self.fx_rates:
            return float(self.fx_rates[pair])
        inverse = pair.inverse()
        if inverse in self.fx_rates:
            return 1.0 / float(self.fx_rates[inverse])
        raise ConfigurationError(f"no FX rate available for {pair}")

    def discount_factors(self, currency: str) -> DiscountFactors:
        try:
            curve = self.discount_curves[currency]
        except KeyError:
            raise ConfigurationError(f"no discount curve available for {currency}") from None
        return DiscountFactors(currency, self.valuation_date, curve)

    def with_discount_curve(self, currency: str, curve: DiscountCurve) -> ImmutableRatesProvider:
        curves = dict(self.discount_curves)
        curves[currency] = curve
        return replace(self, discount_curves=curves)

    def with_fx_rate(self, pair: CurrencyPair, rate: float) -> ImmutableRatesProvider:
        """Copy with the spot of ``pair`` set to ``rate``; a stored inverse quote is replaced."""
        fx = {p: r for p, r in self.fx_rates.items() if p != pair.inverse()}
        fx[pair] = rate
        return replace(self, fx_rates=fx)

    def relative_time(self, when: date) -> float:
        return year_fraction(self.valuation_date, when)
