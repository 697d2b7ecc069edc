"""Bump-and-reprice risk engine.

Curve sensitivities are forward finite differences: each discount-curve
parameter is shifted on its own and the whole valuation (lattice
calibration included) is rerun. Parameters are independent, so the runs
can be spread over a thread pool. The spot delta helper recalibrates on
both sides of a central bump of the FX rate.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

import numpy as np

from .core import CurrencyAmount, CurrencyPair, MultiCurrencyAmount
from .errors import ConfigurationError
from .market import RatesProvider

__all__ = [
    "CurveSensitivity",
    "CurveSensitivities",
    "curve_parameter_sensitivities",
    "numerical_spot_delta",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sensitivity containers
# ---------------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class CurveSensitivity:
    """Sensitivity of a value in ``currency`` to each parameter of one curve."""

    curve_name: str
    curve_currency: str
    currency: str
    sensitivity: np.ndarray

    def __post_init__(self):
        arr = np.array(self.sensitivity, dtype=float).reshape(-1)
        arr.setflags(write=False)
        object.__setattr__(self, "sensitivity", arr)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.curve_name, self.curve_currency, self.currency)

    def multiplied_by(self, factor: float) -> CurveSensitivity:
        return replace(self, sensitivity=self.sensitivity * factor)

    def total(self) -> CurrencyAmount:
        return CurrencyAmount(self.currency, float(self.sensitivity.sum()))


@dataclass(frozen=True)
class CurveSensitivities:
    sensitivities: tuple[CurveSensitivity, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "sensitivities", tuple(self.sensitivities))

    def __len__(self) -> int:
        return len(self.sensitivities)

    def __iter__(self):
        return iter(self.sensitivities)

    def find(self, curve_currency: str, currency: str | None = None) -> CurveSensitivity | None:
        for s in self.sensitivities:
            if s.curve_currency == curve_currency and (currency is None or s.currency == currency):
                return s
        return None

    def combined_with(self, other: CurveSensitivities) -> CurveSensitivities:
        """Adds entries with the same curve and currency, keeps the others."""
        merged: dict[tuple[str, str, str], CurveSensitivity] = {}
        for s in (*self.sensitivities, *other.sensitivities):
            if s.key in merged:
                prev = merged[s.key]
                if prev.sensitivity.shape != s.sensitivity.shape:
                    raise ConfigurationError(f"cannot combine sensitivities of different shapes for {s.key}")
                merged[s.key] = replace(prev, sensitivity=prev.sensitivity + s.sensitivity)
            else:
                merged[s.key] = s
        return CurveSensitivities(tuple(merged.values()))

    def multiplied_by(self, factor: float) -> CurveSensitivities:
        return CurveSensitivities(tuple(s.multiplied_by(factor) for s in self.sensitivities))

    def total(self) -> MultiCurrencyAmount:
        return MultiCurrencyAmount.of(*(s.total() for s in self.sensitivities))


# ---------------------------------------------------------------------------
# Curve bump-and-reprice
# ---------------------------------------------------------------------------
def curve_parameter_sensitivities(
    pv_func: Callable[[RatesProvider], MultiCurrencyAmount],
    rates: RatesProvider,
    currencies: Iterable[str],
    *,
    shift: float = 1e-5,
    max_workers: int = 1,
) -> CurveSensitivities:
    """Forward-difference sensitivity of ``pv_func`` to every curve parameter.

    Parameters
    ----------
    pv_func : callable
        ``pv_func(rates) -> MultiCurrencyAmount``; rerun once per parameter.
    rates : RatesProvider
        Unbumped market.
    currencies : iterable of str
        Currencies whose discount curve is bumped.
    shift : float
        Absolute shift of each parameter.
    max_workers : int
        Thread-pool size; 1 runs sequentially.

    Returns
    -------
    CurveSensitivities
        One entry per (curve, currency of the value).
    """
    if not shift > 0:
        raise ConfigurationError(f"shift must be positive, got {shift}")

    bumps = []
    for ccy in dict.fromkeys(currencies):
        try:
            curve = rates.discount_curves[ccy]
        except KeyError:
            raise ConfigurationError(f"no discount curve available for {ccy}") from None
        for j in range(curve.parameter_count):
            bumped = curve.with_parameter(j, curve.get_parameter(j) + shift)
            bumps.append((ccy, curve, j, rates.with_discount_curve(ccy, bumped)))

    logger.info(
        "bump-and-reprice over %d curve parameters with %d worker(s)", len(bumps), max_workers
    )
    base = pv_func(rates)
    bumped_rates = [b[3] for b in bumps]
    if max_workers > 1 and len(bumps) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            bumped_pvs = list(pool.map(pv_func, bumped_rates))
    else:
        bumped_pvs = [pv_func(r) for r in bumped_rates]

    by_curve: dict[tuple[str, str, str], np.ndarray] = {}
    for (ccy, curve, j, _), pv in zip(bumps, bumped_pvs):
        for value_ccy in dict.fromkeys((*base.currencies, *pv.currencies)):
            key = (curve.name, ccy, value_ccy)
            if key not in by_curve:
                by_curve[key] = np.zeros(curve.parameter_count)
            diff = pv.amount(value_ccy).amount - base.amount(value_ccy).amount
            by_curve[key][j] = diff / shift

    return CurveSensitivities(
        tuple(CurveSensitivity(name, ccy, value_ccy, arr) for (name, ccy, value_ccy), arr in by_curve.items())
    )


# ---------------------------------------------------------------------------
# Spot delta by bump-and-reprice
# ---------------------------------------------------------------------------
def numerical_spot_delta(
    price_func: Callable[[RatesProvider], float],
    rates: RatesProvider,
    pair: CurrencyPair,
    *,
    bump_pct: float = 1e-4,
) -> float:
    """Central-difference delta to the spot of ``pair``.

    ``price_func`` values the option from a rates provider and recalibrates
    whatever it needs; only the spot moves, by ``+/- bump_pct`` of its level.
    """
    if not bump_pct > 0:
        raise ConfigurationError(f"bump_pct must be positive, got {bump_pct}")
    spot = rates.fx_rate(pair)
    eps = bump_pct * spot
    up = price_func(rates.with_fx_rate(pair, spot + eps))
    dn = price_func(rates.with_fx_rate(pair, spot - eps))
    return (up - dn) / (2.0 * eps)
