"""Declarative parameter schema.

An effect chain's parameter contract is defined as a list of ParamDef
objects. ParamSchema wraps the list and derives the plain dicts the rest
of the code works with (defaults, bypass values, ranges) and is the single
place where raw values from a UI, a CLI or a caller get validated.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ParamDef:
    key: str
    default: float
    section: str
    label: str = ""
    bypass: float | None = None          # if None, uses default
    range: tuple[float, float] = (0.0, 1.0)


class ParamSchema:
    """Derives defaults, bypass values and ranges from a declarative list."""

    def __init__(self, params: list[ParamDef]):
        self._params = params
        self._by_key: dict[str, ParamDef] = {p.key: p for p in params}

    def default_params(self) -> dict:
        return {p.key: p.default for p in self._params}

    def bypass_params(self) -> dict:
        return {p.key: p.default if p.bypass is None else p.bypass
                for p in self._params}

    def param_ranges(self) -> dict[str, tuple]:
        return {p.key: p.range for p in self._params}

    def keys(self) -> list[str]:
        return [p.key for p in self._params]

    def validate_and_clamp(self, raw: dict[str, Any]) -> dict:
        """Validate and clamp a raw params dict.

        Unknown keys are dropped, missing keys take their default. Values
        are cast to float and clamped to range; NaN or anything that is not a
        number falls back to the default.
        """
        result = self.default_params()
        for key, value in raw.items():
            p = self._by_key.get(key)
            if p is None:
                continue
            try:
                v = float(value)
            except (TypeError, ValueError):
                continue
            if math.isnan(v):
                continue
            lo, hi = p.range
            result[key] = max(lo, min(hi, v))
        return result

    def get(self, key: str) -> ParamDef | None:
        return self._by_key.get(key)

    def __iter__(self):
        return iter(self._params)

    def __len__(self):
        return len(self._params)
