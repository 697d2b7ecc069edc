# payoffs.py
# Option payoff functions evaluated on a trinomial lattice.
#
# Each function knows its terminal payoff and how to roll option values
# back by one layer; the engine in ``tree.py`` drives the induction.
# Probability columns are ordered (down, middle, up): node j of layer i
# feeds from nodes j, j+1, j+2 of layer i+1.

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .core import BarrierType, PutCall
from .errors import ConfigurationError

__all__ = [
    "TreeOptionFunction",
    "VanillaOptionFunction",
    "DigitalOptionFunction",
    "ConstantContinuousSingleBarrierKnockoutFunction",
]

# relative tolerance for a node sitting on a strike or barrier
LEVEL_TOLERANCE = 1e-12


def _at_level(state: np.ndarray, level: float) -> np.ndarray:
    if not np.isfinite(level):
        return np.zeros(state.shape, dtype=bool)
    return np.abs(state - level) <= LEVEL_TOLERANCE * abs(level)


def expectation(discount_factor: float, probability: np.ndarray, values: np.ndarray) -> np.ndarray:
    """Discounted expectation of next-layer ``values`` from every node."""
    return discount_factor * (
        probability[:, 0] * values[:-2]
        + probability[:, 1] * values[1:-1]
        + probability[:, 2] * values[2:]
    )


# ---------------------------------------------------------------------------
# Shared base
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TreeOptionFunction:
    """Fields common to every payoff function."""

    strike: float
    time_to_expiry: float
    number_of_steps: int

    def __post_init__(self):
        if self.number_of_steps < 1:
            raise ConfigurationError(f"number_of_steps must be positive, got {self.number_of_steps}")
        if self.time_to_expiry < 0:
            raise ConfigurationError(f"time_to_expiry must be non-negative, got {self.time_to_expiry}")

    def payoff_at_expiry(self, state: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def payoff_derivative_at_expiry(self, state: np.ndarray) -> np.ndarray:
        """Derivative of the terminal payoff with respect to the node value."""
        raise NotImplementedError

    def knocked_out_nodes(self, state: np.ndarray) -> np.ndarray:
        """Nodes whose value is fixed by the contract rather than by induction."""
        return np.zeros(state.shape, dtype=bool)

    def next_option_values(
        self,
        discount_factor: float,
        probability: np.ndarray,
        state: np.ndarray,
        values: np.ndarray,
        layer: int,
    ) -> np.ndarray:
        """Option values on ``layer`` from the values on ``layer + 1``."""
        return expectation(discount_factor, probability, values)


# ---------------------------------------------------------------------------
# Vanilla
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class VanillaOptionFunction(TreeOptionFunction):
    put_call: PutCall = PutCall.CALL

    def payoff_at_expiry(self, state):
        return np.maximum(self.put_call.sign * (state - self.strike), 0.0)

    def payoff_derivative_at_expiry(self, state):
        sign = self.put_call.sign
        itm = sign * (state - self.strike) > 0
        slope = np.where(itm, sign, 0.0)
        # a node on the strike takes the average of both one-sided slopes
        return np.where(_at_level(state, self.strike), 0.5 * sign, slope)


# ---------------------------------------------------------------------------
# European digital
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class DigitalOptionFunction(TreeOptionFunction):
    """Pays one unit when ``sign * (S - K)`` is positive at expiry.

    ``sign=+1`` pays above the strike, ``sign=-1`` below. A node exactly on
    the strike pays nothing unless ``inclusive`` is set.
    """

    sign: int = 1
    inclusive: bool = False

    def __post_init__(self):
        super().__post_init__()
        if self.sign not in (1, -1):
            raise ConfigurationError(f"sign must be +1 or -1, got {self.sign}")

    def payoff_at_expiry(self, state):
        on_strike = _at_level(state, self.strike)
        beyond = (self.sign * (state - self.strike) > 0) & ~on_strike
        if self.inclusive:
            beyond |= on_strike
        return beyond.astype(float)

    def payoff_derivative_at_expiry(self, state):
        return np.zeros(state.shape)


# ---------------------------------------------------------------------------
# Continuous single barrier, knock-out with rebate
# ---------------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class ConstantContinuousSingleBarrierKnockoutFunction(TreeOptionFunction):
    """Vanilla payoff knocked out at a constant barrier.

    ``rebate[i]`` is the value on layer ``i`` of a node at or beyond the
    barrier. A strike of ``+inf`` (up call) or ``-inf`` (down put) leaves
    the rebate as the only cash flow, which is how one-touch digitals are
    priced.
    """

    put_call: PutCall = PutCall.CALL
    barrier_type: BarrierType = BarrierType.UP
    barrier_level: float = np.inf
    rebate: np.ndarray = None

    def __post_init__(self):
        super().__post_init__()
        if not self.barrier_level > 0:
            raise ConfigurationError(f"barrier_level must be positive, got {self.barrier_level}")
        rebate = np.zeros(self.number_of_steps + 1) if self.rebate is None else np.array(self.rebate, dtype=float)
        if rebate.shape != (self.number_of_steps + 1,):
            raise ConfigurationError(
                f"rebate must have {self.number_of_steps + 1} entries, got {rebate.size}"
            )
        rebate.setflags(write=False)
        object.__setattr__(self, "rebate", rebate)

    def is_knocked_out(self, state: np.ndarray) -> np.ndarray:
        if self.barrier_type.is_down:
            return state <= self.barrier_level * (1.0 + LEVEL_TOLERANCE)
        return state >= self.barrier_level * (1.0 - LEVEL_TOLERANCE)

    def knocked_out_nodes(self, state):
        return self.is_knocked_out(state)

    def _vanilla(self, state):
        with np.errstate(invalid="ignore"):
            return np.maximum(self.put_call.sign * (state - self.strike), 0.0)

    def payoff_at_expiry(self, state):
        return np.where(self.is_knocked_out(state), self.rebate[-1], self._vanilla(state))

    def payoff_derivative_at_expiry(self, state):
        sign = self.put_call.sign
        slope = np.where(sign * (state - self.strike) > 0, sign, 0.0)
        slope = np.where(_at_level(state, self.strike), 0.5 * sign, slope)
        return np.where(self.is_knocked_out(state), 0.0, slope)

    def next_option_values(self, discount_factor, probability, state, values, layer):
        rolled = expectation(discount_factor, probability, values)
        return np.where(self.is_knocked_out(state), self.rebate[layer], rolled)
