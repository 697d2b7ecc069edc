"""Implied trinomial tree: calibrated lattice data and its calibrator.

The calibrator follows Derman, Kani & Chriss (1996), *Implied Trinomial
Trees of the Volatility Smile*.  Node values sit on a log-uniform grid
around spot; at every step the up/down transition probabilities are chosen
so that the tree reprices the Black call (upper half) and put (lower half)
struck at the next layer's nodes, while each node's expected value equals
its forward.

References
----------
Derman, E., Kani, I. and Chriss, N. (1996). Implied trinomial trees of the
volatility smile. *Journal of Derivatives*, 3(4), 7-22.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .black import black_price, forward_rate
from .core import CurrencyPair
from .errors import CalibrationError, ConfigurationError
from .market import RatesProvider
from .products import (
    ResolvedFxDigitalOption,
    ResolvedFxOption,
    ResolvedFxSingleBarrierOption,
    ResolvedFxVanillaOption,
)
from .volatility import FxOptionVolatilities

__all__ = ["LatticeData", "ImpliedTrinomialTreeCalibrator"]

logger = logging.getLogger(__name__)

_PROBABILITY_TOLERANCE = 1e-9
# relative shift of the space step used to difference the calibration
_SPACE_STEP_SHIFT = 1e-5


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, dtype=float)
    arr.setflags(write=False)
    return arr


# ---------------------------------------------------------------------------
# Lattice data
# ---------------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class LatticeData:
    """Calibrated recombining trinomial lattice.

    Parameters
    ----------
    number_of_steps : int
        Number of time steps ``n``.
    spot : float
        Spot used for the calibration.
    time : array, shape (n+1,)
        Layer times, ``time[0] == 0`` and ``time[n]`` the time to expiry.
    state_value : sequence of arrays
        ``state_value[i]`` holds the ``2i+1`` node values of layer ``i``.
    transition_probability : sequence of arrays
        ``transition_probability[i]`` has shape ``(2i+1, 3)`` with columns
        (down, middle, up); node ``j`` of layer ``i`` moves to nodes ``j``,
        ``j+1`` and ``j+2`` of layer ``i+1``.
    discount_factor : array, shape (n,)
        One-step counter-currency discount factor from ``time[i]`` to
        ``time[i+1]``.
    space_step_derivative : float
        Derivative of the log space step ``dx`` with respect to spot.
        Non-zero when the grid was stretched to put a node on a strike or
        barrier, since that node then stays fixed while spot moves.
    transition_probability_derivative : sequence of arrays, optional
        Derivative of each probability layer with respect to spot, for
        recalibration at the moved spot. ``None`` means the probabilities do
        not depend on spot.
    """

    number_of_steps: int
    spot: float
    time: np.ndarray
    state_value: tuple
    transition_probability: tuple
    discount_factor: np.ndarray
    space_step_derivative: float = 0.0
    transition_probability_derivative: Optional[tuple] = None

    def __post_init__(self):
        n = self.number_of_steps
        if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < 1:
            raise ConfigurationError(f"number_of_steps must be a positive integer, got {n!r}")
        if not (np.isfinite(self.spot) and self.spot > 0):
            raise ConfigurationError(f"spot must be positive, got {self.spot}")

        time = _frozen(self.time)
        if time.shape != (n + 1,):
            raise ConfigurationError(f"time must have {n + 1} entries, got {time.size}")
        if time[0] != 0.0 or np.any(np.diff(time) < 0):
            raise ConfigurationError("time must start at 0 and be non-decreasing")

        if len(self.state_value) != n + 1:
            raise ConfigurationError(
                f"state_value must have {n + 1} layers, got {len(self.state_value)}"
            )
        states = tuple(_frozen(layer) for layer in self.state_value)
        for i, layer in enumerate(states):
            if layer.shape != (2 * i + 1,):
                raise ConfigurationError(
                    f"layer {i} must have {2 * i + 1} nodes, got shape {layer.shape}"
                )

        if len(self.transition_probability) != n:
            raise ConfigurationError(
                f"transition_probability must have {n} layers, got {len(self.transition_probability)}"
            )
        probs = tuple(_frozen(layer) for layer in self.transition_probability)
        for i, layer in enumerate(probs):
            if layer.shape != (2 * i + 1, 3):
                raise ConfigurationError(
                    f"probabilities of layer {i} must have shape {(2 * i + 1, 3)}, got {layer.shape}"
                )
            if not np.all(np.isfinite(layer)) or np.any(layer < 0.0) or np.any(layer > 1.0):
                raise ConfigurationError(f"probabilities of layer {i} must lie in [0, 1]")
            if np.any(np.abs(layer.sum(axis=1) - 1.0) > _PROBABILITY_TOLERANCE):
                raise ConfigurationError(f"probabilities of layer {i} must sum to 1")

        df = _frozen(self.discount_factor)
        if df.shape != (n,):
            raise ConfigurationError(f"discount_factor must have {n} entries, got {df.size}")
        if not np.all(np.isfinite(df)) or np.any(df <= 0):
            raise ConfigurationError("discount factors must be positive and finite")

        if not np.isfinite(self.space_step_derivative):
            raise ConfigurationError("space_step_derivative must be finite")
        prob_derivs = self.transition_probability_derivative
        if prob_derivs is not None:
            if len(prob_derivs) != n:
                raise ConfigurationError(
                    f"transition_probability_derivative must have {n} layers, got {len(prob_derivs)}"
                )
            prob_derivs = tuple(_frozen(layer) for layer in prob_derivs)
            for i, layer in enumerate(prob_derivs):
                if layer.shape != probs[i].shape:
                    raise ConfigurationError(
                        f"probability derivatives of layer {i} must have shape {probs[i].shape}, "
                        f"got {layer.shape}"
                    )
            object.__setattr__(self, "transition_probability_derivative", prob_derivs)

        object.__setattr__(self, "space_step_derivative", float(self.space_step_derivative))
        object.__setattr__(self, "number_of_steps", int(n))
        object.__setattr__(self, "spot", float(self.spot))
        object.__setattr__(self, "time", time)
        object.__setattr__(self, "state_value", states)
        object.__setattr__(self, "transition_probability", probs)
        object.__setattr__(self, "discount_factor", df)

    @property
    def time_to_expiry(self) -> float:
        return float(self.time[-1])

    def state_value_at_layer(self, layer: int) -> np.ndarray:
        return self.state_value[layer]

    def probability_at_layer(self, layer: int) -> np.ndarray:
        return self.transition_probability[layer]

    def discount_factor_at_layer(self, layer: int) -> float:
        return float(self.discount_factor[layer])

    def local_volatility_at_layer(self, layer: int) -> np.ndarray:
        """Annualised volatility of the log-return out of each node of ``layer``.

        Zero for a zero-length step.
        """
        dt = self.time[layer + 1] - self.time[layer]
        probs = self.transition_probability[layer]
        if dt <= 0:
            return np.zeros(probs.shape[0])
        here = self.state_value[layer]
        nxt = self.state_value[layer + 1]
        children = np.column_stack([nxt[:-2], nxt[1:-1], nxt[2:]])
        log_ret = np.log(children / here[:, None])
        mean = np.sum(probs * log_ret, axis=1)
        var = np.sum(probs * log_ret ** 2, axis=1) - mean ** 2
        return np.sqrt(np.maximum(var, 0.0) / dt)

    def state_derivative_at_layer(self, layer: int) -> np.ndarray:
        """Derivative of the node values of ``layer`` with respect to spot."""
        states = self.state_value[layer]
        offsets = np.arange(-layer, layer + 1)
        return states / self.spot + states * offsets * self.space_step_derivative

    def probability_derivative_at_layer(self, layer: int) -> Optional[np.ndarray]:
        if self.transition_probability_derivative is None:
            return None
        return self.transition_probability_derivative[layer]


# ---------------------------------------------------------------------------
# Calibrator
# ---------------------------------------------------------------------------
def _anchor_level(option: ResolvedFxOption) -> Optional[float]:
    """Level that a lattice node should hit: barrier if any, else strike."""
    match option:
        case ResolvedFxSingleBarrierOption():
            return option.barrier.barrier_level
        case ResolvedFxVanillaOption() | ResolvedFxDigitalOption():
            return option.strike
    return None


def _aligned_space_step(dx: float, spot: float, level: Optional[float], n: int) -> tuple[float, int]:
    """Widen ``dx`` so that ``level`` falls exactly on a node, when reachable.

    Returns the space step and the node offset of ``level`` from spot (0 when
    no node was aligned).
    """
    if level is None or not (math.isfinite(level) and level > 0):
        return dx, 0
    distance = abs(math.log(level / spot))
    k = math.floor(distance / dx)
    if 1 <= k <= n:
        return distance / k, k
    return dx, 0


def _fallback_probabilities(fwd, s_down, s_mid, s_up):
    """Probabilities matching the node forward using only its children.

    Returns ``(p_up, p_down, ok)``; ``ok`` is False where the forward lies
    outside the children.
    """
    span = s_up - s_down
    with np.errstate(divide="ignore", invalid="ignore"):
        upper = (s_mid < fwd) & (fwd < s_up)
        lower = (s_down < fwd) & (fwd <= s_mid)
        p_up = np.where(
            upper,
            0.5 * ((fwd - s_mid) / (s_up - s_mid) + (fwd - s_down) / span),
            0.5 * (fwd - s_down) / span,
        )
        p_down = np.where(
            upper,
            0.5 * (s_up - fwd) / span,
            0.5 * ((s_up - fwd) / span + (s_mid - fwd) / (s_mid - s_down)),
        )
    return p_up, p_down, upper | lower


@dataclass(frozen=True, eq=False)
class _MarketGrid:
    """Inputs of one calibration that do not depend on the space step."""

    pair: CurrencyPair
    spot: float
    times: np.ndarray
    df_base: np.ndarray
    df_counter: np.ndarray
    volatilities: FxOptionVolatilities


@dataclass(frozen=True)
class ImpliedTrinomialTreeCalibrator:
    """Builds the implied trinomial lattice for an FX option.

    Parameters
    ----------
    number_of_steps : int
        Number of time steps; at least 1.
    """

    number_of_steps: int = 51

    def __post_init__(self):
        n = self.number_of_steps
        if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < 1:
            raise ConfigurationError(f"number_of_steps must be a positive integer, got {n!r}")

    def calibrate(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        *,
        with_derivatives: bool = True,
    ) -> LatticeData:
        """Calibrate the lattice to ``volatilities`` up to the option's expiry.

        With ``with_derivatives`` the lattice also records how its geometry
        and probabilities move with spot, so that the spot delta rolled back
        on it matches a recalibration at the bumped spot. This assumes the
        surface is read at strike over forward, as the flat and SVI surfaces
        are: strikes and forwards then scale with spot, and the probabilities
        depend on spot only through the space step.
        """
        pair = option.currency_pair
        surface_pair = volatilities.currency_pair
        if pair != surface_pair and pair != surface_pair.inverse():
            raise ConfigurationError(f"volatilities for {surface_pair} cannot price {pair}")

        n = self.number_of_steps
        T = volatilities.relative_time(option.expiry)
        if T < 0:
            raise ConfigurationError(f"option expiry {option.expiry} is before the valuation date")

        base_df = rates.discount_factors(pair.base)
        counter_df = rates.discount_factors(pair.counter)
        spot = rates.fx_rate(pair)

        if T == 0:
            logger.debug("zero time to expiry for %s, using a degenerate lattice", pair)
            return self._degenerate(spot)

        times = np.linspace(0.0, T, n + 1)
        times[-1] = T
        dt = T / n
        grid = _MarketGrid(
            pair=pair,
            spot=spot,
            times=times,
            df_base=np.array([base_df.discount_factor(t) for t in times]),
            df_counter=np.array([counter_df.discount_factor(t) for t in times]),
            volatilities=volatilities,
        )

        fwd_expiry = forward_rate(spot, grid.df_base[-1], grid.df_counter[-1])
        sigma_ref = volatilities.volatility(pair, T, fwd_expiry, fwd_expiry)
        if not sigma_ref > 0:
            raise ConfigurationError(f"at-the-money volatility must be positive, got {sigma_ref}")
        level = _anchor_level(option)
        dx, offset = _aligned_space_step(sigma_ref * math.sqrt(3.0 * dt), spot, level, n)

        states, probabilities, one_step_df, stabilized = self._build_layers(grid, dx)
        logger.debug(
            "calibrated %d-step lattice for %s: T=%.6f, dx=%.6f, %d stabilized nodes",
            n, pair, T, dx, sum(int(np.count_nonzero(m)) for m in stabilized),
        )

        dx_spot = 0.0
        prob_derivs = None
        if with_derivatives and offset:
            # the aligned node stays on its level: dx = |ln(level / spot)| / offset
            dx_spot = -math.copysign(1.0, math.log(level / spot)) / (offset * spot)
            prob_derivs = self._probability_derivatives(grid, dx, dx_spot, probabilities, stabilized)

        return LatticeData(
            number_of_steps=n,
            spot=spot,
            time=times,
            state_value=tuple(states),
            transition_probability=tuple(probabilities),
            discount_factor=one_step_df,
            space_step_derivative=dx_spot,
            transition_probability_derivative=prob_derivs,
        )

    def _build_layers(self, grid: _MarketGrid, dx: float):
        """Forward induction of the DKC probabilities on a grid of step ``dx``.

        Returns the node values, the probability layers, the one-step discount
        factors and, per layer, the mask of nodes that needed the fallback.
        """
        n = self.number_of_steps
        spot, times = grid.spot, grid.times
        df_b, df_c = grid.df_base, grid.df_counter
        pair, volatilities = grid.pair, grid.volatilities

        states = [spot * np.exp(dx * np.arange(-i, i + 1)) for i in range(n + 1)]
        probabilities = []
        stabilized = []
        one_step_df = np.empty(n)
        ad_prices = np.array([df_c[0]])

        for i in range(n):
            node = states[i]
            nxt = states[i + 1]
            df = df_c[i + 1] / df_c[i]
            node_fwd = node * (df_b[i + 1] / df_b[i]) / df
            one_step_df[i] = df

            s_down, s_mid, s_up = nxt[:-2], nxt[1:-1], nxt[2:]
            strikes = s_mid
            t_next = times[i + 1]
            fwd_t = forward_rate(spot, df_b[i + 1], df_c[i + 1])
            vols = np.array([volatilities.volatility(pair, t_next, k, fwd_t) for k in strikes])
            calls = black_price(fwd_t, strikes, t_next, vols, True, df_c[i + 1]) / df
            puts = black_price(fwd_t, strikes, t_next, vols, False, df_c[i + 1]) / df

            lam_fwd = ad_prices * node_fwd
            above_lf = np.cumsum(lam_fwd[::-1])[::-1] - lam_fwd
            above_l = np.cumsum(ad_prices[::-1])[::-1] - ad_prices
            below_lf = np.cumsum(lam_fwd) - lam_fwd
            below_l = np.cumsum(ad_prices) - ad_prices

            upper = np.arange(2 * i + 1) >= i
            with np.errstate(divide="ignore", invalid="ignore"):
                p_call = (calls - (above_lf - strikes * above_l)) / (ad_prices * (s_up - s_mid))
                q_call = (node_fwd - s_mid - p_call * (s_up - s_mid)) / (s_down - s_mid)
                q_put = (puts - (strikes * below_l - below_lf)) / (ad_prices * (s_mid - s_down))
                p_put = (node_fwd - s_mid + q_put * (s_mid - s_down)) / (s_up - s_mid)
            p_up = np.where(upper, p_call, p_put)
            p_down = np.where(upper, q_call, q_put)

            bad = (
                ~np.isfinite(p_up) | ~np.isfinite(p_down)
                | (p_up < 0) | (p_up > 1) | (p_down < 0) | (p_down > 1)
                | (p_up + p_down > 1)
            )
            if np.any(bad):
                fb_up, fb_down, ok = _fallback_probabilities(node_fwd, s_down, s_mid, s_up)
                failed = bad & ~ok
                if np.any(failed):
                    j = int(np.flatnonzero(failed)[0])
                    raise CalibrationError(
                        f"node forward {node_fwd[j]:.6g} lies outside its children "
                        f"[{s_down[j]:.6g}, {s_up[j]:.6g}] at node {j}",
                        step=i,
                    )
                p_up = np.where(bad, fb_up, p_up)
                p_down = np.where(bad, fb_down, p_down)
            stabilized.append(bad)

            p_mid = np.clip(1.0 - p_up - p_down, 0.0, 1.0)
            probabilities.append(np.column_stack([p_down, p_mid, p_up]))

            nxt_ad = np.zeros(2 * i + 3)
            nxt_ad[:-2] += ad_prices * p_down
            nxt_ad[1:-1] += ad_prices * p_mid
            nxt_ad[2:] += ad_prices * p_up
            ad_prices = df * nxt_ad

        return states, probabilities, one_step_df, stabilized

    def _probability_derivatives(self, grid, dx, dx_spot, probabilities, stabilized) -> tuple:
        """Spot derivative of every probability layer through the space step.

        The calibration is rerun at ``dx +/- h``. A node that switches
        between the implied and the fallback probabilities across the shift
        is differenced on the side that keeps its branch.
        """
        h = _SPACE_STEP_SHIFT * dx
        _, up, _, up_stabilized = self._build_layers(grid, dx + h)
        _, down, _, down_stabilized = self._build_layers(grid, dx - h)

        derivs = []
        for p0, pu, pd, m0, mu, md in zip(
            probabilities, up, down, stabilized, up_stabilized, down_stabilized
        ):
            same_up = (mu == m0)[:, None]
            same_down = (md == m0)[:, None]
            slope = np.where(
                same_up & same_down,
                (pu - pd) / (2.0 * h),
                np.where(same_up, (pu - p0) / h, np.where(same_down, (p0 - pd) / h, 0.0)),
            )
            derivs.append(slope * dx_spot)
        return tuple(derivs)

    def _degenerate(self, spot: float) -> LatticeData:
        n = self.number_of_steps
        middle = np.array([0.0, 1.0, 0.0])
        return LatticeData(
            number_of_steps=n,
            spot=spot,
            time=np.zeros(n + 1),
            state_value=tuple(np.full(2 * i + 1, spot) for i in range(n + 1)),
            transition_probability=tuple(np.tile(middle, (2 * i + 1, 1)) for i in range(n)),
            discount_factor=np.ones(n),
        )
