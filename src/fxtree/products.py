"""Resolved FX option products.

These are the immutable, fully-resolved pricing inputs handed over by the
trade-resolution step. The pricer never mutates them.

``ResolvedFxOption`` is a closed union; the pricer dispatches on it with
``match`` and rejects anything else.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import TypeAlias

from .core import (
    BarrierType,
    CurrencyAmount,
    CurrencyPair,
    DigitalPayoffType,
    KnockType,
    LongShort,
    PutCall,
)
from .errors import ConfigurationError

__all__ = [
    "ResolvedFxSingle",
    "ResolvedFxVanillaOption",
    "ResolvedFxDigitalOption",
    "SimpleConstantContinuousBarrier",
    "ResolvedFxSingleBarrierOption",
    "ResolvedFxOption",
    "Payment",
    "ResolvedFxOptionTrade",
]


@dataclass(frozen=True)
class ResolvedFxSingle:
    """Exchange of two currency amounts on one payment date.

    The amounts carry opposite signs: receiving base and paying counter is
    the underlying of a call on the base currency.
    """

    base_currency_payment: CurrencyAmount
    counter_currency_payment: CurrencyAmount
    payment_date: date

    def __post_init__(self):
        if self.base_currency_payment.currency == self.counter_currency_payment.currency:
            raise ConfigurationError("base and counter payments must be in different currencies")
        if self.base_currency_payment.amount * self.counter_currency_payment.amount >= 0:
            raise ConfigurationError("base and counter payments must have opposite, non-zero signs")

    @classmethod
    def of(
        cls,
        base_amount: CurrencyAmount,
        rate: float,
        payment_date: date,
        counter_currency: str,
    ) -> ResolvedFxSingle:
        """Build the exchange of ``base_amount`` against ``-base_amount * rate``."""
        counter = CurrencyAmount(counter_currency, -base_amount.amount * rate)
        return cls(base_amount, counter, payment_date)

    @property
    def currency_pair(self) -> CurrencyPair:
        return CurrencyPair(self.base_currency_payment.currency, self.counter_currency_payment.currency)


@dataclass(frozen=True)
class ResolvedFxVanillaOption:
    long_short: LongShort
    expiry: datetime
    underlying: ResolvedFxSingle

    def __post_init__(self):
        if self.expiry.date() > self.underlying.payment_date:
            raise ConfigurationError(
                f"expiry {self.expiry.date()} must not be after payment date {self.underlying.payment_date}"
            )

    @property
    def currency_pair(self) -> CurrencyPair:
        return self.underlying.currency_pair

    @property
    def counter_currency(self) -> str:
        return self.underlying.counter_currency_payment.currency

    @property
    def strike(self) -> float:
        return abs(self.underlying.counter_currency_payment.amount / self.underlying.base_currency_payment.amount)

    @property
    def put_call(self) -> PutCall:
        return PutCall.PUT if self.underlying.counter_currency_payment.amount > 0 else PutCall.CALL

    @property
    def notional(self) -> float:
        """Absolute base-currency notional."""
        return abs(self.underlying.base_currency_payment.amount)

    @property
    def signed_notional(self) -> CurrencyAmount:
        return CurrencyAmount(self.counter_currency, int(self.long_short) * self.notional)


@dataclass(frozen=True)
class ResolvedFxDigitalOption:
    """Cash-or-nothing FX option paying ``payment`` in the counter currency.

    For the one-touch payoff type ``strike`` is the barrier level. With
    ``knock_type=KNOCK_OUT`` a one-touch becomes a no-touch and a European
    digital pays on the other side of the strike.
    """

    long_short: LongShort
    expiry: datetime
    currency_pair: CurrencyPair
    strike: float
    barrier_type: BarrierType
    payoff_type: DigitalPayoffType
    payment: CurrencyAmount
    knock_type: KnockType = KnockType.KNOCK_IN

    def __post_init__(self):
        if not self.strike >= 0:
            raise ConfigurationError(f"strike must be non-negative, got {self.strike}")
        if self.payment.currency != self.currency_pair.counter:
            raise ConfigurationError(
                f"payment currency {self.payment.currency} must be the counter currency "
                f"{self.currency_pair.counter}"
            )

    @property
    def counter_currency(self) -> str:
        return self.currency_pair.counter

    @property
    def notional(self) -> float:
        return abs(self.payment.amount)

    @property
    def signed_notional(self) -> CurrencyAmount:
        return CurrencyAmount(self.counter_currency, int(self.long_short) * self.notional)


@dataclass(frozen=True)
class SimpleConstantContinuousBarrier:
    barrier_type: BarrierType
    knock_type: KnockType
    barrier_level: float

    def __post_init__(self):
        if not self.barrier_level > 0:
            raise ConfigurationError(f"barrier_level must be positive, got {self.barrier_level}")


@dataclass(frozen=True)
class ResolvedFxSingleBarrierOption:
    """Vanilla option with a continuously monitored barrier and optional rebate.

    The rebate of a knock-out is paid when the barrier is touched; the rebate
    of a knock-in is paid at expiry if the barrier was never touched.
    """

    underlying_option: ResolvedFxVanillaOption
    barrier: SimpleConstantContinuousBarrier
    rebate: CurrencyAmount | None = None

    def __post_init__(self):
        if self.rebate is not None and not self.currency_pair.contains(self.rebate.currency):
            raise ConfigurationError(
                f"rebate currency {self.rebate.currency} must belong to {self.currency_pair}"
            )

    @property
    def currency_pair(self) -> CurrencyPair:
        return self.underlying_option.currency_pair

    @property
    def expiry(self) -> datetime:
        return self.underlying_option.expiry

    @property
    def counter_currency(self) -> str:
        return self.underlying_option.counter_currency

    @property
    def notional(self) -> float:
        return self.underlying_option.notional

    @property
    def signed_notional(self) -> CurrencyAmount:
        return self.underlying_option.signed_notional


ResolvedFxOption: TypeAlias = (
    ResolvedFxVanillaOption | ResolvedFxDigitalOption | ResolvedFxSingleBarrierOption
)


@dataclass(frozen=True)
class Payment:
    value: CurrencyAmount
    date: date

    @property
    def currency(self) -> str:
        return self.value.currency


@dataclass(frozen=True)
class ResolvedFxOptionTrade:
    """An option product with the premium paid or received for it."""

    product: ResolvedFxOption
    premium: Payment | None = None
