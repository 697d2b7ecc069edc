"""Pricer configuration, optionally read from a YAML file.

Example ``tree.yaml``::

    number_of_steps: 101
    rates_shift: 1.0e-5
    digital_inclusive_boundary: false
    max_workers: 4
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigurationError

__all__ = ["TreeConfig", "DEFAULTS", "load_yaml_config", "load_config"]


@dataclass(frozen=True)
class TreeConfig:
    """Settings of the implied-tree pricer.

    Parameters
    ----------
    number_of_steps : int
        Time steps of the calibrated lattice.
    rates_shift : float
        Absolute bump applied to each curve parameter for rates sensitivities.
    digital_inclusive_boundary : bool
        Whether a terminal node exactly on a digital strike pays.
    max_workers : int
        Threads used by bump-and-reprice; 1 runs sequentially.
    """

    number_of_steps: int = 51
    rates_shift: float = 1e-5
    digital_inclusive_boundary: bool = False
    max_workers: int = 1

    def __post_init__(self):
        if isinstance(self.number_of_steps, bool) or not isinstance(self.number_of_steps, int):
            raise ConfigurationError(f"number_of_steps must be an integer, got {self.number_of_steps!r}")
        if self.number_of_steps < 1:
            raise ConfigurationError(f"number_of_steps must be at least 1, got {self.number_of_steps}")
        if not self.rates_shift > 0:
            raise ConfigurationError(f"rates_shift must be positive, got {self.rates_shift}")
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be a positive integer, got {self.max_workers!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> TreeConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {unknown}")
        values = dict(data)
        if "rates_shift" in values:
            values["rates_shift"] = float(values["rates_shift"])
        return cls(**values)


DEFAULTS: dict[str, Any] = asdict(TreeConfig())


def load_yaml_config(path: str | Path | None) -> dict[str, Any]:
    """Read the settings mapping stored in ``path``; no path or an empty file gives ``{}``.

    Settings are flat scalars, one per ``TreeConfig`` field.
    """
    if path is None:
        return {}
    path = Path(path).expanduser()
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{path}: expected a mapping of settings, got {type(data).__name__}")
    nested = sorted(str(key) for key, value in data.items() if isinstance(value, Mapping))
    if nested:
        raise ConfigurationError(f"{path}: settings must be scalars, found sections {nested}")
    return dict(data)


def load_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> TreeConfig:
    """Defaults, then the YAML file, then ``overrides``; later keys win."""
    return TreeConfig.from_mapping({**DEFAULTS, **load_yaml_config(path), **(overrides or {})})
