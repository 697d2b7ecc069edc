"""Error taxonomy for the tree pricing engine.

All errors derive from ``ValueError`` so callers that already guard pricer
calls with ``except ValueError`` keep working.
"""

from __future__ import annotations

__all__ = [
    "PricingError",
    "ConfigurationError",
    "ConsistencyError",
    "StaleDataError",
    "CalibrationError",
    "UnsupportedVariantError",
]


class PricingError(ValueError):
    """Base class for every error raised by ``fxtree``."""


class ConfigurationError(PricingError):
    """Invalid setup: step count, missing curve / FX / volatility coverage."""


class ConsistencyError(PricingError):
    """Inputs that are individually valid but disagree with each other."""


class StaleDataError(ConsistencyError):
    """A precomputed lattice no longer matches the option or the market."""


class CalibrationError(PricingError):
    """No arbitrage-free transition probabilities could be found."""

    def __init__(self, message: str, step: int):
        super().__init__(f"{message} (step {step})")
        self.step = step


class UnsupportedVariantError(PricingError):
    """A product variant with no payoff-function mapping."""
