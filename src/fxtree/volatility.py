# volatility.py
# Black implied-volatility surfaces for an FX pair: flat and SVI slices.

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Optional, Protocol, runtime_checkable

import numpy as np
from scipy.optimize import least_squares

from .core import CurrencyPair
from .errors import ConfigurationError
from .market import year_fraction

__all__ = [
    "FxOptionVolatilities",
    "FlatFxVolatilities",
    "SviSlice",
    "SviFxVolatilities",
    "fit_svi_slice",
]

logger = logging.getLogger(__name__)


@runtime_checkable
class FxOptionVolatilities(Protocol):
    """Black volatility surface queried by expiry time, strike and forward."""

    currency_pair: CurrencyPair
    valuation_date_time: datetime

    def relative_time(self, when: datetime) -> float: ...

    def volatility(self, pair: CurrencyPair, expiry_time: float, strike: float, forward: float) -> float: ...


def _oriented(pair: CurrencyPair, surface_pair: CurrencyPair, strike: float, forward: float):
    """Map a strike/forward quoted on ``pair`` onto the surface's own pair."""
    if pair == surface_pair:
        return strike, forward
    if pair == surface_pair.inverse():
        return 1.0 / strike, 1.0 / forward
    raise ConfigurationError(f"volatilities for {surface_pair} cannot price {pair}")


# ---------------------------------------------------------------------------
# Flat surface
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FlatFxVolatilities:
    """Single Black volatility for every expiry and strike."""

    currency_pair: CurrencyPair
    valuation_date_time: datetime
    level: float

    def __post_init__(self):
        if not self.level > 0:
            raise ConfigurationError(f"volatility level must be positive, got {self.level}")

    def relative_time(self, when: datetime) -> float:
        return year_fraction(self.valuation_date_time, when)

    def volatility(self, pair: CurrencyPair, expiry_time: float, strike: float, forward: float) -> float:
        _oriented(pair, self.currency_pair, strike, forward)
        return float(self.level)


# ---------------------------------------------------------------------------
# SVI raw parameterisation
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SviSlice:
    """Raw SVI parameterisation for a single expiry slice.

    The total implied variance is:
        w(k) = a + b * (rho * (k - m) + sqrt((k - m)^2 + sigma^2))

    where k = log(K / F) is log-moneyness (F = forward).

    Parameters
    ----------
    a, b, rho, m, sigma : float
        SVI parameters.
    expiry : float
        Slice expiry in years.
    """

    a: float
    b: float
    rho: float
    m: float
    sigma: float
    expiry: float

    def __post_init__(self):
        if not self.expiry > 0:
            raise ConfigurationError(f"SVI slice expiry must be positive, got {self.expiry}")
        if self.b < 0 or abs(self.rho) >= 1 or self.sigma <= 0:
            raise ConfigurationError(
                f"invalid SVI parameters b={self.b}, rho={self.rho}, sigma={self.sigma}"
            )

    def total_var(self, k: np.ndarray | float) -> np.ndarray:
        """Evaluate total variance w(k)."""
        k = np.asarray(k, dtype=float)
        km = k - self.m
        return self.a + self.b * (self.rho * km + np.sqrt(km * km + self.sigma * self.sigma))

    def iv(self, k: np.ndarray | float) -> np.ndarray:
        """Return implied volatility from log-moneyness."""
        w = self.total_var(k)
        return np.sqrt(np.maximum(w, 0.0) / self.expiry)


# ---------------------------------------------------------------------------
# Interpolated SVI surface
# ---------------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class SviFxVolatilities:
    """Surface built from SVI slices.

    Between calibrated slices total variance is linearly interpolated in
    time at fixed log-moneyness; outside the slice range the nearest slice's
    volatility is held flat.
    """

    currency_pair: CurrencyPair
    valuation_date_time: datetime
    slices: Mapping[float, SviSlice] = field(default_factory=dict)

    def __post_init__(self):
        if not self.slices:
            raise ConfigurationError("at least one SVI slice is required")
        ordered = dict(sorted(self.slices.items()))
        for expiry, svi in ordered.items():
            if abs(svi.expiry - expiry) > 1e-12:
                raise ConfigurationError(
                    f"slice keyed at {expiry} carries expiry {svi.expiry}"
                )
        object.__setattr__(self, "slices", MappingProxyType(ordered))

    @property
    def expiries(self) -> np.ndarray:
        return np.array(list(self.slices), dtype=float)

    def relative_time(self, when: datetime) -> float:
        return year_fraction(self.valuation_date_time, when)

    def iv_from_logm(self, k: np.ndarray | float, t: float) -> np.ndarray:
        """Implied vol from log-moneyness k = log(K/F) at time ``t``."""
        expiries = self.expiries
        idx = int(np.searchsorted(expiries, t))
        if idx < len(expiries) and expiries[idx] == t:
            return self.slices[float(expiries[idx])].iv(k)
        if idx == 0:
            return self.slices[float(expiries[0])].iv(k)
        if idx >= len(expiries):
            return self.slices[float(expiries[-1])].iv(k)

        t_lo, t_hi = float(expiries[idx - 1]), float(expiries[idx])
        w_lo = self.slices[t_lo].total_var(k)
        w_hi = self.slices[t_hi].total_var(k)
        alpha = (t - t_lo) / (t_hi - t_lo)
        w = (1.0 - alpha) * w_lo + alpha * w_hi
        return np.sqrt(np.maximum(w, 0.0) / t)

    def volatility(self, pair: CurrencyPair, expiry_time: float, strike: float, forward: float) -> float:
        strike, forward = _oriented(pair, self.currency_pair, strike, forward)
        k = np.log(strike / forward)
        return float(self.iv_from_logm(k, expiry_time))


# ---------------------------------------------------------------------------
# SVI fitting
# ---------------------------------------------------------------------------
def fit_svi_slice(
    strikes: np.ndarray,
    forward: float,
    expiry: float,
    market_vols: np.ndarray,
    *,
    initial_guess: Optional[tuple] = None,
    bounds: Optional[tuple] = None,
) -> SviSlice:
    """Fit raw SVI to a single smile slice.

    Parameters
    ----------
    strikes : array-like, shape (N,)
        Absolute strikes.
    forward : float
        FX forward for this expiry.
    expiry : float
        Time to expiry in years.
    market_vols : array-like, shape (N,)
        Market Black volatilities.
    initial_guess : tuple, optional
        ``(a, b, rho, m, sigma)`` starting point for the solver.
    bounds : tuple, optional
        ``(lower, upper)`` each of length 5.

    Returns
    -------
    SviSlice
    """
    strikes = np.asarray(strikes, dtype=float)
    market_vols = np.asarray(market_vols, dtype=float)
    if strikes.shape != market_vols.shape or strikes.size < 5:
        raise ConfigurationError(
            f"need at least 5 matching strike/vol quotes, got {strikes.size} and {market_vols.size}"
        )
    k = np.log(strikes / forward)
    w_market = market_vols ** 2 * expiry

    if initial_guess is None:
        initial_guess = (float(np.min(w_market)), 0.1, 0.0, 0.0, 0.1)

    if bounds is None:
        #        a      b     rho      m     sigma
        lower = (-0.5,  1e-6, -0.999, -2.0,  1e-4)
        upper = ( 2.0,  5.0,   0.999,  2.0,  5.0)
        bounds = (lower, upper)

    def residuals(params):
        a, b, rho, m, sig = params
        km = k - m
        return a + b * (rho * km + np.sqrt(km * km + sig * sig)) - w_market

    result = least_squares(residuals, x0=initial_guess, bounds=bounds, method="trf", max_nfev=2000)
    logger.debug("SVI fit at T=%.4f: cost=%.3e, status=%d", expiry, result.cost, result.status)

    a, b, rho, m, sig = result.x
    return SviSlice(a=float(a), b=float(b), rho=float(rho), m=float(m), sigma=float(sig), expiry=expiry)
