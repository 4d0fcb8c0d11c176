"""Effect settings schema and engine-wide constants.

This is the shared contract between the player, the offline renderer and
the CLI. All parameter sources produce an EffectSettings, and every way of
building one goes through the schema clamp, so out-of-range values never
reach the DSP.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Mapping

from shared.params import ParamDef, ParamSchema

# Incoming PCM payloads carry no header; this rate is part of the contract.
SR = 24000

# Frames per real-time callback.
BLOCK_SIZE = 512

PRODUCT = "voicefx"
DOWNLOAD_NAME = f"{PRODUCT}-audio-effects.wav"

SCHEMA = ParamSchema([
    ParamDef("distortion", 0.0, "Effects", label="Distortion", bypass=0.0),
    ParamDef("echo", 0.0, "Effects", label="Echo", bypass=0.0),
    ParamDef("reverb", 0.0, "Effects", label="Reverb", bypass=0.0),
])


def default_params() -> dict:
    return SCHEMA.default_params()


@dataclass(frozen=True)
class EffectSettings:
    """Three effect intensities, each in [0, 1].

    Construction clamps, so ``EffectSettings(distortion=1.7)`` is the same
    as ``EffectSettings(distortion=1.0)``.
    """

    distortion: float = 0.0
    echo: float = 0.0
    reverb: float = 0.0

    def __post_init__(self):
        clamped = SCHEMA.validate_and_clamp({
            "distortion": self.distortion,
            "echo": self.echo,
            "reverb": self.reverb,
        })
        for key, value in clamped.items():
            object.__setattr__(self, key, value)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "EffectSettings":
        """Build from a loose mapping; unknown keys are ignored."""
        return cls(**SCHEMA.validate_and_clamp(dict(raw)))

    @classmethod
    def coerce(cls, value: "EffectSettings | Mapping[str, Any] | None") -> "EffectSettings":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return cls.from_dict(value)

    def replace(self, **changes) -> "EffectSettings":
        return self.from_dict({**self.to_dict(), **changes})

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def is_bypass(self) -> bool:
        return self.to_dict() == SCHEMA.bypass_params()
