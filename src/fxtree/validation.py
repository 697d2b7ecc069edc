"""Model validation helpers for the implied tree.

Benchmarks tree prices against the Black formula on the same surface and
measures how the tree error shrinks with the number of steps.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

from .black import black_delta, black_price, forward_rate
from .lattice import ImpliedTrinomialTreeCalibrator
from .market import RatesProvider
from .pricer import ImpliedTrinomialTreeFxOptionPricer
from .products import ResolvedFxVanillaOption
from .risk import numerical_spot_delta
from .volatility import FxOptionVolatilities

__all__ = ["black_reference", "cross_validate", "convergence_analysis"]


def black_reference(
    option: ResolvedFxVanillaOption,
    rates: RatesProvider,
    volatilities: FxOptionVolatilities,
) -> tuple[float, float]:
    """Black price and spot delta per unit notional, in the counter currency."""
    pair = option.currency_pair
    T = volatilities.relative_time(option.expiry)
    spot = rates.fx_rate(pair)
    df_b = rates.discount_factors(pair.base).discount_factor(T)
    df_c = rates.discount_factors(pair.counter).discount_factor(T)
    fwd = forward_rate(spot, df_b, df_c)
    vol = volatilities.volatility(pair, T, option.strike, fwd)
    is_call = option.put_call.sign > 0
    price = float(black_price(fwd, option.strike, T, vol, is_call, df_c))
    delta = float(df_b * black_delta(fwd, option.strike, T, vol, is_call))
    return price, delta


# ---------------------------------------------------------------------------
# Cross-model benchmarking
# ---------------------------------------------------------------------------

def cross_validate(
    option: ResolvedFxVanillaOption,
    rates: RatesProvider,
    volatilities: FxOptionVolatilities,
    *,
    number_of_steps: int = 101,
) -> dict:
    """Compare tree price and delta with Black on the same surface.

    Returns
    -------
    dict
        ``"tree"``, ``"black"``, ``"tree_delta"``, ``"bump_delta"``
        (recalibrated central difference), ``"black_delta"``,
        ``"price_discrepancy"`` (relative to Black) and
        ``"delta_discrepancy"`` (absolute, tree against Black).
    """
    pricer = ImpliedTrinomialTreeFxOptionPricer(ImpliedTrinomialTreeCalibrator(number_of_steps))
    vd = pricer.price_derivatives(option, rates, volatilities)
    bs_price, bs_delta = black_reference(option, rates, volatilities)
    bump_delta = numerical_spot_delta(
        lambda r: pricer.price(option, r, volatilities), rates, option.currency_pair
    )

    if bs_price > 0:
        price_disc = abs(vd.value - bs_price) / bs_price
    else:
        price_disc = abs(vd.value - bs_price)

    return {
        "tree": vd.value,
        "black": bs_price,
        "tree_delta": vd.derivative(0),
        "bump_delta": bump_delta,
        "black_delta": bs_delta,
        "price_discrepancy": price_disc,
        "delta_discrepancy": abs(vd.derivative(0) - bs_delta),
    }


# ---------------------------------------------------------------------------
# Convergence analysis
# ---------------------------------------------------------------------------

def convergence_analysis(
    price_func: Callable[[int], float],
    steps: list | np.ndarray,
    *,
    reference: Optional[float] = None,
) -> dict:
    """Analyse convergence of the tree price as the number of steps grows.

    Parameters
    ----------
    price_func : callable
        ``price_func(number_of_steps) -> float``.
    steps : array-like
        Step counts to test.
    reference : float, optional
        True price for error computation.  Default: the price at the
        largest step count, which is then excluded from the fit.

    Returns
    -------
    dict
        ``"steps"``, ``"prices"``, ``"errors"``, ``"order"`` (estimated).
    """
    steps = [int(n) for n in steps]
    prices = [float(price_func(n)) for n in steps]

    if reference is None:
        reference = prices[-1]
        fit_range = slice(0, len(steps) - 1)
    else:
        fit_range = slice(0, len(steps))

    errors = [abs(p - reference) for p in prices]

    # Estimate convergence order from log-log regression
    order = float("nan")
    valid = [(n, e) for n, e in zip(steps[fit_range], errors[fit_range]) if e > 0]
    if len(valid) >= 2:
        log_n = np.log([n for n, _ in valid])
        log_e = np.log([e for _, e in valid])
        # error ~ C / n^order  => log(e) = -order * log(n) + const
        coeffs = np.polyfit(log_n, log_e, 1)
        order = -float(coeffs[0])

    return {
        "steps": steps,
        "prices": prices,
        "errors": errors,
        "order": order,
    }
