from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from types import MappingProxyType

import numpy as np

from .errors import ConfigurationError


# ---------------------------------------------------------------------------
# Enumerations shared by products and payoff functions
# ---------------------------------------------------------------------------
class PutCall(StrEnum):
    CALL = "call"
    PUT = "put"

    @property
    def sign(self) -> float:
        """+1 for a call, -1 for a put."""
        return 1.0 if self is PutCall.CALL else -1.0


class LongShort(IntEnum):
    SHORT = -1
    LONG = 1


class BarrierType(StrEnum):
    UP = "up"
    DOWN = "down"

    @property
    def is_down(self) -> bool:
        return self is BarrierType.DOWN


class KnockType(StrEnum):
    KNOCK_IN = "knock-in"
    KNOCK_OUT = "knock-out"

    @property
    def is_knock_in(self) -> bool:
        return self is KnockType.KNOCK_IN


class DigitalPayoffType(StrEnum):
    """European pays on the expiry fixing, one-touch pays on the barrier touch."""

    EUROPEAN = "european"
    ONE_TOUCH = "one-touch"


# ---------------------------------------------------------------------------
# Currencies and amounts
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CurrencyPair:
    """Ordered pair of ISO codes; an FX rate is quoted as counter per base."""

    base: str
    counter: str

    def __post_init__(self):
        if len(self.base) != 3 or len(self.counter) != 3:
            raise ConfigurationError(f"currency codes must have 3 letters, got {self.base!r}/{self.counter!r}")
        if self.base == self.counter:
            raise ConfigurationError(f"currency pair must have distinct currencies, got {self.base}/{self.counter}")

    @classmethod
    def parse(cls, text: str) -> CurrencyPair:
        """Parse ``"EUR/USD"``."""
        base, sep, counter = text.strip().upper().partition("/")
        if not sep:
            raise ConfigurationError(f"currency pair must look like 'EUR/USD', got {text!r}")
        return cls(base, counter)

    def contains(self, currency: str) -> bool:
        return currency in (self.base, self.counter)

    def inverse(self) -> CurrencyPair:
        return CurrencyPair(self.counter, self.base)

    def __str__(self) -> str:
        return f"{self.base}/{self.counter}"


@dataclass(frozen=True)
class CurrencyAmount:
    currency: str
    amount: float

    def multiplied_by(self, factor: float) -> CurrencyAmount:
        return CurrencyAmount(self.currency, self.amount * factor)

    def plus(self, other: CurrencyAmount) -> CurrencyAmount:
        if other.currency != self.currency:
            raise ConfigurationError(f"cannot add {other.currency} to {self.currency}")
        return CurrencyAmount(self.currency, self.amount + other.amount)


@dataclass(frozen=True)
class MultiCurrencyAmount:
    """Amounts in several currencies, at most one entry per currency."""

    amounts: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "amounts", MappingProxyType(dict(self.amounts)))

    @classmethod
    def of(cls, *amounts: CurrencyAmount) -> MultiCurrencyAmount:
        totals: dict[str, float] = {}
        for ca in amounts:
            totals[ca.currency] = totals.get(ca.currency, 0.0) + ca.amount
        return cls(totals)

    @property
    def currencies(self) -> tuple[str, ...]:
        return tuple(self.amounts)

    def amount(self, currency: str) -> CurrencyAmount:
        return CurrencyAmount(currency, self.amounts.get(currency, 0.0))

    def plus(self, other: MultiCurrencyAmount | CurrencyAmount) -> MultiCurrencyAmount:
        if isinstance(other, CurrencyAmount):
            other = MultiCurrencyAmount.of(other)
        totals = dict(self.amounts)
        for ccy, amt in other.amounts.items():
            totals[ccy] = totals.get(ccy, 0.0) + amt
        return MultiCurrencyAmount(totals)


# ---------------------------------------------------------------------------
# Value with first-order derivatives
# ---------------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class ValueDerivatives:
    """A value and its derivatives with respect to the model inputs.

    The tree engine fills a single derivative, the sensitivity to spot.
    """

    value: float
    derivatives: np.ndarray

    def __post_init__(self):
        arr = np.array(self.derivatives, dtype=float).reshape(-1)
        arr.setflags(write=False)
        object.__setattr__(self, "derivatives", arr)

    @classmethod
    def of(cls, value: float, *derivatives: float) -> ValueDerivatives:
        return cls(float(value), np.array(derivatives, dtype=float))

    def derivative(self, index: int) -> float:
        return float(self.derivatives[index])
