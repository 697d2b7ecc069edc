# black.py
# Vectorised Black (forward) pricing used to calibrate the implied tree.
# All public functions accept scalars *or* NumPy arrays and broadcast.

from __future__ import annotations

import numpy as np
from scipy.stats import norm

__all__ = ["black_price", "black_delta", "forward_rate"]

_N = norm.cdf   # vectorised standard-normal CDF


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------
def _d1_d2(F, K, T, sigma):
    """Compute d1, d2 arrays on the forward.  All inputs broadcast."""
    F, K, T, sigma = (np.asarray(x, dtype=float) for x in (F, K, T, sigma))
    sig_sqrt_T = sigma * np.sqrt(T)
    with np.errstate(divide="ignore", invalid="ignore"):
        d1 = (np.log(F / K) + 0.5 * sig_sqrt_T * sig_sqrt_T) / sig_sqrt_T
    d2 = d1 - sig_sqrt_T
    return d1, d2


# ---------------------------------------------------------------------------
# Vectorised price
# ---------------------------------------------------------------------------
def black_price(F, K, T, sigma, is_call, discount_factor=1.0) -> np.ndarray:
    """Discounted Black price of a European option on a forward.

    Parameters
    ----------
    F : array-like
        Forward of the underlying at expiry.
    K : array-like
        Strike.
    T : array-like
        Time to expiry in years.
    sigma : array-like
        Black implied volatility.
    is_call : bool or array of bool
    discount_factor : array-like
        Discount factor from payment to valuation.

    Returns
    -------
    np.ndarray
        Option prices.  With zero variance the discounted intrinsic value is
        returned.
    """
    F, K, T, sigma, df = (
        np.asarray(x, dtype=float) for x in (F, K, T, sigma, discount_factor)
    )
    is_call = np.asarray(is_call, dtype=bool)
    d1, d2 = _d1_d2(F, K, T, sigma)

    call_px = F * _N(d1) - K * _N(d2)
    put_px = K * _N(-d2) - F * _N(-d1)
    px = np.where(is_call, call_px, put_px)

    # zero variance: intrinsic
    intrinsic = np.where(is_call, np.maximum(F - K, 0.0), np.maximum(K - F, 0.0))
    degenerate = ~np.isfinite(d1) | (sigma * np.sqrt(T) <= 0.0)
    return df * np.where(degenerate, intrinsic, px)


def black_delta(F, K, T, sigma, is_call) -> np.ndarray:
    """Undiscounted forward delta, N(d1) for a call and N(d1) - 1 for a put."""
    d1, _ = _d1_d2(F, K, T, sigma)
    nd1 = _N(d1)
    return np.where(np.asarray(is_call, dtype=bool), nd1, nd1 - 1.0)


def forward_rate(spot: float, df_base: float, df_counter: float) -> float:
    """FX forward by covered interest parity: ``spot * DF_base / DF_counter``."""
    return spot * df_base / df_counter
