"""Implied trinomial-tree pricing of FX options.

Calibrates a recombining trinomial lattice to a Black volatility surface
and values vanilla, digital and single-barrier FX options on it.
"""

from .config import TreeConfig, load_config
from .core import (
    BarrierType,
    CurrencyAmount,
    CurrencyPair,
    DigitalPayoffType,
    KnockType,
    LongShort,
    MultiCurrencyAmount,
    PutCall,
    ValueDerivatives,
)
from .errors import (
    CalibrationError,
    ConfigurationError,
    ConsistencyError,
    PricingError,
    StaleDataError,
    UnsupportedVariantError,
)
from .lattice import ImpliedTrinomialTreeCalibrator, LatticeData
from .market import DiscountFactors, ImmutableRatesProvider, InterpolatedZeroRateCurve
from .payoffs import (
    ConstantContinuousSingleBarrierKnockoutFunction,
    DigitalOptionFunction,
    VanillaOptionFunction,
)
from .pricer import ImpliedTrinomialTreeFxOptionPricer, ImpliedTrinomialTreeFxOptionTradePricer
from .products import (
    Payment,
    ResolvedFxDigitalOption,
    ResolvedFxOption,
    ResolvedFxOptionTrade,
    ResolvedFxSingle,
    ResolvedFxSingleBarrierOption,
    ResolvedFxVanillaOption,
    SimpleConstantContinuousBarrier,
)
from .risk import CurveSensitivities, CurveSensitivity
from .tree import TrinomialTree
from .volatility import FlatFxVolatilities, SviFxVolatilities, SviSlice, fit_svi_slice

__version__ = "0.1.0"

__all__ = [
    # config
    "TreeConfig",
    "load_config",
    # core
    "BarrierType",
    "CurrencyAmount",
    "CurrencyPair",
    "DigitalPayoffType",
    "KnockType",
    "LongShort",
    "MultiCurrencyAmount",
    "PutCall",
    "ValueDerivatives",
    # errors
    "PricingError",
    "ConfigurationError",
    "ConsistencyError",
    "StaleDataError",
    "CalibrationError",
    "UnsupportedVariantError",
    # market
    "DiscountFactors",
    "ImmutableRatesProvider",
    "InterpolatedZeroRateCurve",
    "FlatFxVolatilities",
    "SviFxVolatilities",
    "SviSlice",
    "fit_svi_slice",
    # products
    "Payment",
    "ResolvedFxDigitalOption",
    "ResolvedFxOption",
    "ResolvedFxOptionTrade",
    "ResolvedFxSingle",
    "ResolvedFxSingleBarrierOption",
    "ResolvedFxVanillaOption",
    "SimpleConstantContinuousBarrier",
    # tree
    "LatticeData",
    "ImpliedTrinomialTreeCalibrator",
    "TrinomialTree",
    "VanillaOptionFunction",
    "DigitalOptionFunction",
    "ConstantContinuousSingleBarrierKnockoutFunction",
    # pricers and risk
    "ImpliedTrinomialTreeFxOptionPricer",
    "ImpliedTrinomialTreeFxOptionTradePricer",
    "CurveSensitivity",
    "CurveSensitivities",
    "__version__",
]
