"""FX option pricers on the implied trinomial tree.

``ImpliedTrinomialTreeFxOptionPricer`` values a resolved product: it maps
the product onto one or more payoff functions, rolls them back on a
calibrated lattice and converts the per-unit result into currency amounts
and sensitivities. ``ImpliedTrinomialTreeFxOptionTradePricer`` adds the
premium payment of a trade.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Optional

import numpy as np

from .config import TreeConfig
from .core import (
    BarrierType,
    CurrencyAmount,
    DigitalPayoffType,
    KnockType,
    MultiCurrencyAmount,
    PutCall,
    ValueDerivatives,
)
from .errors import ConsistencyError, StaleDataError, UnsupportedVariantError
from .lattice import ImpliedTrinomialTreeCalibrator, LatticeData
from .market import RatesProvider
from .payoffs import (
    ConstantContinuousSingleBarrierKnockoutFunction,
    DigitalOptionFunction,
    VanillaOptionFunction,
)
from .products import (
    ResolvedFxDigitalOption,
    ResolvedFxOption,
    ResolvedFxOptionTrade,
    ResolvedFxSingleBarrierOption,
    ResolvedFxVanillaOption,
)
from .risk import CurveSensitivities, curve_parameter_sensitivities
from .tree import TrinomialTree
from .volatility import FxOptionVolatilities

__all__ = [
    "ImpliedTrinomialTreeFxOptionPricer",
    "ImpliedTrinomialTreeFxOptionTradePricer",
]

logger = logging.getLogger(__name__)

ONE_BASIS_POINT = 1e-4
_TOLERANCE = 1e-12


def _digital_sign(barrier_type: BarrierType, knock_type: KnockType) -> int:
    """+1 pays above the strike, -1 below."""
    sign = -1 if barrier_type.is_down else 1
    return sign if knock_type.is_knock_in else -sign


def _discount_to_expiry(data: LatticeData) -> np.ndarray:
    """``DF(T) / DF(t_i)`` for every layer, from the lattice's own discounting."""
    cumulative = np.concatenate([[1.0], np.cumprod(data.discount_factor)])
    return cumulative[-1] / cumulative


class ImpliedTrinomialTreeFxOptionPricer:
    """Prices vanilla, digital and single-barrier FX options on an implied tree.

    Parameters
    ----------
    calibrator : ImpliedTrinomialTreeCalibrator, optional
        Lattice builder; defaults to 51 steps.
    rates_shift : float
        Curve parameter shift for rates sensitivities.
    digital_inclusive_boundary : bool
        Whether a terminal node exactly on a digital strike pays.
    max_workers : int
        Threads for bump-and-reprice.
    """

    def __init__(
        self,
        calibrator: Optional[ImpliedTrinomialTreeCalibrator] = None,
        *,
        rates_shift: float = 1e-5,
        digital_inclusive_boundary: bool = False,
        max_workers: int = 1,
    ):
        self._calibrator = calibrator or ImpliedTrinomialTreeCalibrator()
        self._rates_shift = rates_shift
        self._digital_inclusive_boundary = digital_inclusive_boundary
        self._max_workers = max_workers
        self._tree = TrinomialTree()

    @classmethod
    def from_config(cls, config: TreeConfig) -> ImpliedTrinomialTreeFxOptionPricer:
        return cls(
            ImpliedTrinomialTreeCalibrator(config.number_of_steps),
            rates_shift=config.rates_shift,
            digital_inclusive_boundary=config.digital_inclusive_boundary,
            max_workers=config.max_workers,
        )

    @property
    def calibrator(self) -> ImpliedTrinomialTreeCalibrator:
        return self._calibrator

    @property
    def number_of_steps(self) -> int:
        return self._calibrator.number_of_steps

    @property
    def rates_shift(self) -> float:
        return self._rates_shift

    # --- lattice ------------------------------------------------------------
    def calibrate(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
    ) -> LatticeData:
        self._check_supported(option)
        return self._calibrator.calibrate(option, rates, volatilities)

    # --- measures -----------------------------------------------------------
    def price(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> float:
        """Price per unit notional, in the counter currency."""
        return self.price_derivatives(option, rates, volatilities, lattice, compute_derivative=False).value

    def present_value(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> CurrencyAmount:
        price = self.price(option, rates, volatilities, lattice)
        return option.signed_notional.multiplied_by(price)

    def currency_exposure(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> MultiCurrencyAmount:
        """Counter amount ``(price - delta * spot)`` and base amount ``delta``, times notional."""
        pair = option.currency_pair
        vd = self.price_derivatives(option, rates, volatilities, lattice)
        price, delta = vd.value, vd.derivative(0)
        spot = rates.fx_rate(pair)
        signed = option.signed_notional.amount
        return MultiCurrencyAmount.of(
            CurrencyAmount(pair.counter, (price - delta * spot) * signed),
            CurrencyAmount(pair.base, delta * signed),
        )

    def present_value_sensitivity_rates(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> CurveSensitivities:
        """Present value sensitivity to the discount curves of both currencies.

        Each bumped market is recalibrated; ``lattice`` only serves the
        unbumped valuation.
        """
        self._check_supported(option)
        pair = option.currency_pair
        base_pv = self.present_value(option, rates, volatilities, lattice)

        def pv_func(r: RatesProvider) -> MultiCurrencyAmount:
            if r is rates:
                return MultiCurrencyAmount.of(base_pv)
            return MultiCurrencyAmount.of(self.present_value(option, r, volatilities))

        return curve_parameter_sensitivities(
            pv_func,
            rates,
            (pair.base, pair.counter),
            shift=self._rates_shift,
            max_workers=self._max_workers,
        )

    def pv01_rates_calibrated_sum(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> MultiCurrencyAmount:
        sens = self.present_value_sensitivity_rates(option, rates, volatilities, lattice)
        return sens.multiplied_by(ONE_BASIS_POINT).total()

    def pv01_rates_calibrated_bucketed(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> CurveSensitivities:
        sens = self.present_value_sensitivity_rates(option, rates, volatilities, lattice)
        return sens.multiplied_by(ONE_BASIS_POINT)

    # --- dispatch -----------------------------------------------------------
    def price_derivatives(
        self,
        option: ResolvedFxOption,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
        compute_derivative: bool = True,
    ) -> ValueDerivatives:
        """Price per unit notional and, optionally, its derivative to spot."""
        self._check_supported(option)
        self._check_inputs(option, rates, volatilities, lattice)
        if lattice is None:
            data = self._calibrator.calibrate(
                option, rates, volatilities, with_derivatives=compute_derivative
            )
        else:
            data = lattice
        logger.debug("pricing %s on a %d-step lattice", type(option).__name__, data.number_of_steps)

        match option:
            case ResolvedFxVanillaOption():
                return self._vanilla(option, data, compute_derivative)
            case ResolvedFxDigitalOption():
                return self._digital(option, data, compute_derivative)
            case ResolvedFxSingleBarrierOption():
                return self._barrier(option, rates, data, compute_derivative)
            case _:
                raise UnsupportedVariantError(f"no tree payoff for {type(option).__name__}")

    def _check_supported(self, option) -> None:
        if not isinstance(option, ResolvedFxOption):
            raise UnsupportedVariantError(f"no tree payoff for {type(option).__name__}")

    def _check_inputs(self, option, rates, volatilities, lattice) -> None:
        vol_date = volatilities.valuation_date_time.date()
        if rates.valuation_date != vol_date:
            raise ConsistencyError(
                f"rates valuation date {rates.valuation_date} differs from volatility date {vol_date}"
            )
        if lattice is None:
            return
        if lattice.number_of_steps != self.number_of_steps:
            raise ConsistencyError(
                f"lattice has {lattice.number_of_steps} steps, pricer expects {self.number_of_steps}"
            )
        T = volatilities.relative_time(option.expiry)
        if abs(lattice.time_to_expiry - T) > _TOLERANCE:
            raise StaleDataError(
                f"lattice expires at {lattice.time_to_expiry:.12f}, option at {T:.12f}"
            )
        spot = rates.fx_rate(option.currency_pair)
        if abs(lattice.spot - spot) > _TOLERANCE * max(1.0, abs(spot)):
            raise StaleDataError(f"lattice spot {lattice.spot} differs from market spot {spot}")

    def _vanilla(self, option: ResolvedFxVanillaOption, data: LatticeData, compute: bool) -> ValueDerivatives:
        function = VanillaOptionFunction(
            strike=option.strike,
            time_to_expiry=data.time_to_expiry,
            number_of_steps=data.number_of_steps,
            put_call=option.put_call,
        )
        return self._tree.option_price_adjoint(function, data, compute)

    def _digital(self, option: ResolvedFxDigitalOption, data: LatticeData, compute: bool) -> ValueDerivatives:
        n = data.number_of_steps
        if option.payoff_type is DigitalPayoffType.EUROPEAN:
            function = DigitalOptionFunction(
                strike=option.strike,
                time_to_expiry=data.time_to_expiry,
                number_of_steps=n,
                sign=_digital_sign(option.barrier_type, option.knock_type),
                inclusive=self._digital_inclusive_boundary,
            )
            return self._tree.option_price_adjoint(function, data, compute)

        # touch digitals: knock-out with no terminal payoff and the payment as rebate
        if option.barrier_type.is_down:
            strike, put_call = -math.inf, PutCall.PUT
        else:
            strike, put_call = math.inf, PutCall.CALL
        to_expiry = _discount_to_expiry(data)
        one_touch = option.knock_type.is_knock_in
        rebate = np.ones(n + 1) if one_touch else to_expiry
        function = ConstantContinuousSingleBarrierKnockoutFunction(
            strike=strike,
            time_to_expiry=data.time_to_expiry,
            number_of_steps=n,
            put_call=put_call,
            barrier_type=option.barrier_type,
            barrier_level=option.strike,
            rebate=rebate,
        )
        touched = self._tree.option_price_adjoint(function, data, compute)
        if one_touch:
            return touched
        # no-touch: the unit paid at expiry minus its value on a touch
        value = to_expiry[0] - touched.value
        if compute:
            return ValueDerivatives.of(value, -touched.derivative(0))
        return ValueDerivatives.of(value)

    def _barrier(
        self,
        option: ResolvedFxSingleBarrierOption,
        rates: RatesProvider,
        data: LatticeData,
        compute: bool,
    ) -> ValueDerivatives:
        n = data.number_of_steps
        underlying = option.underlying_option
        barrier = option.barrier
        pair = option.currency_pair
        level = barrier.barrier_level

        rebate_ratio = 0.0
        rebate_in_base = False
        if option.rebate is not None:
            rebate_ratio = option.rebate.amount / underlying.notional
            rebate_in_base = option.rebate.currency == pair.base

        def knockout(rebate: np.ndarray) -> ValueDerivatives:
            function = ConstantContinuousSingleBarrierKnockoutFunction(
                strike=underlying.strike,
                time_to_expiry=data.time_to_expiry,
                number_of_steps=n,
                put_call=underlying.put_call,
                barrier_type=barrier.barrier_type,
                barrier_level=level,
                rebate=rebate,
            )
            return self._tree.option_price_adjoint(function, data, compute)

        if barrier.knock_type is KnockType.KNOCK_OUT:
            # rebate paid on touch, when spot equals the barrier
            paid = rebate_ratio * level if rebate_in_base else rebate_ratio
            return knockout(np.full(n + 1, paid))

        # knock-in = vanilla + rebate at expiry - knock-out paying the rebate's value on touch
        if rebate_in_base:
            base_df = rates.discount_factors(pair.base)
            df_b = np.array([base_df.discount_factor(t) for t in data.time])
            rebate = rebate_ratio * level * df_b[-1] / df_b
            rebate_value = rebate_ratio * data.spot * df_b[-1]
            rebate_delta = rebate_ratio * df_b[-1]
        else:
            to_expiry = _discount_to_expiry(data)
            rebate = rebate_ratio * to_expiry
            rebate_value = rebate_ratio * to_expiry[0]
            rebate_delta = 0.0

        vanilla = self._vanilla(underlying, data, compute)
        knocked_out = knockout(rebate)
        value = vanilla.value + rebate_value - knocked_out.value
        if compute:
            delta = vanilla.derivative(0) + rebate_delta - knocked_out.derivative(0)
            return ValueDerivatives.of(value, delta)
        return ValueDerivatives.of(value)


class ImpliedTrinomialTreeFxOptionTradePricer:
    """Trade-level measures: the product plus its premium payment."""

    def __init__(self, product_pricer: Optional[ImpliedTrinomialTreeFxOptionPricer] = None):
        self._product_pricer = product_pricer or ImpliedTrinomialTreeFxOptionPricer()

    @property
    def product_pricer(self) -> ImpliedTrinomialTreeFxOptionPricer:
        return self._product_pricer

    def _premium_value(self, trade: ResolvedFxOptionTrade, rates: RatesProvider) -> MultiCurrencyAmount:
        premium = trade.premium
        if premium is None or premium.date < rates.valuation_date:
            return MultiCurrencyAmount()
        df = rates.discount_factors(premium.currency).discount_factor_at(premium.date)
        return MultiCurrencyAmount.of(premium.value.multiplied_by(df))

    def present_value(
        self,
        trade: ResolvedFxOptionTrade,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> MultiCurrencyAmount:
        pv = self._product_pricer.present_value(trade.product, rates, volatilities, lattice)
        return self._premium_value(trade, rates).plus(pv)

    def currency_exposure(
        self,
        trade: ResolvedFxOptionTrade,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> MultiCurrencyAmount:
        ce = self._product_pricer.currency_exposure(trade.product, rates, volatilities, lattice)
        return ce.plus(self._premium_value(trade, rates))

    def current_cash(self, trade: ResolvedFxOptionTrade, valuation_date: date) -> CurrencyAmount:
        """Premium paid or received on the valuation date, else zero."""
        premium = trade.premium
        if premium is not None and premium.date == valuation_date:
            return premium.value
        currency = premium.currency if premium is not None else trade.product.counter_currency
        return CurrencyAmount(currency, 0.0)

    def present_value_sensitivity_rates(
        self,
        trade: ResolvedFxOptionTrade,
        rates: RatesProvider,
        volatilities: FxOptionVolatilities,
        lattice: Optional[LatticeData] = None,
    ) -> CurveSensitivities:
        product_pricer = self._product_pricer
        product_sens = product_pricer.present_value_sensitivity_rates(
            trade.product, rates, volatilities, lattice
        )
        premium = trade.premium
        if premium is None or premium.date < rates.valuation_date:
            return product_sens
        premium_sens = curve_parameter_sensitivities(
            lambda r: self._premium_value(trade, r),
            rates,
            (premium.currency,),
            shift=product_pricer.rates_shift,
        )
        return product_sens.combined_with(premium_sens)
