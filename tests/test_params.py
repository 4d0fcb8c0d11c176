"""Test effect settings clamping and the parameter schema.

Run: uv run python -m pytest tests/test_params.py
"""

import dataclasses
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from shared.params import ParamDef, ParamSchema
from voicefx.engine.params import SCHEMA, EffectSettings, default_params


def test_defaults_are_bypass():
    assert default_params() == {"distortion": 0.0, "echo": 0.0, "reverb": 0.0}
    assert EffectSettings().is_bypass


def test_out_of_range_values_are_clamped():
    s = EffectSettings(distortion=-0.3, echo=1.7, reverb=0.4)
    assert s.distortion == 0.0
    assert s.echo == 1.0
    assert s.reverb == 0.4


def test_infinities_clamp_and_nan_falls_back():
    s = EffectSettings(distortion=float("inf"), echo=float("-inf"), reverb=float("nan"))
    assert s.distortion == 1.0
    assert s.echo == 0.0
    assert s.reverb == 0.0


def test_from_dict_ignores_unknown_and_bad_values():
    s = EffectSettings.from_dict({"echo": "0.25", "reverb": "loud", "chorus": 1.0})
    assert s == EffectSettings(echo=0.25)


def test_replace_clamps():
    s = EffectSettings(echo=0.5).replace(reverb=3.0)
    assert s.echo == 0.5
    assert s.reverb == 1.0


def test_coerce():
    s = EffectSettings(reverb=0.3)
    assert EffectSettings.coerce(s) is s
    assert EffectSettings.coerce(None) == EffectSettings()
    assert EffectSettings.coerce({"reverb": 0.3}) == s


def test_settings_are_immutable():
    s = EffectSettings()
    with pytest.raises(dataclasses.FrozenInstanceError):
        s.echo = 0.5


def test_schema_lists_the_three_controls():
    assert SCHEMA.keys() == ["distortion", "echo", "reverb"]
    assert all(r == (0.0, 1.0) for r in SCHEMA.param_ranges().values())
    assert len(SCHEMA) == 3
    assert SCHEMA.get("echo").label == "Echo"
    assert SCHEMA.get("flanger") is None


def test_schema_respects_custom_ranges():
    schema = ParamSchema([ParamDef("gain", 1.0, "Out", range=(0.0, 2.0), bypass=1.0)])
    assert schema.validate_and_clamp({"gain": 5}) == {"gain": 2.0}
    assert schema.validate_and_clamp({}) == {"gain": 1.0}
    assert schema.bypass_params() == {"gain": 1.0}
