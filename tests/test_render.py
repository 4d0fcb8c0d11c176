"""Test offline rendering and WAV export.

Run: uv run python -m pytest tests/test_render.py
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from voicefx.audio import render as offline
from voicefx.engine import pcm
from voicefx.engine.errors import RenderError
from voicefx.engine.graph import EffectGraph
from voicefx.engine.params import DOWNLOAD_NAME, SR, EffectSettings


def sine_buffer(n=1000, freq=440.0, sr=SR):
    t = np.arange(n) / sr
    return pcm.SampleBuffer(0.5 * np.sin(2 * np.pi * freq * t), sr)


def test_zero_settings_scenario():
    buf = sine_buffer()
    out = offline.render(buf, EffectSettings())
    assert len(out) == 1000
    assert out.sample_rate == 24000
    assert np.max(np.abs(out.samples - buf.samples)) <= 1e-6


def test_output_matches_source_length_and_rate():
    buf = sine_buffer(n=30000, sr=SR)
    out = offline.render(buf, {"distortion": 0.3, "echo": 0.6, "reverb": 0.4})
    assert len(out) == len(buf)
    assert out.sample_rate == buf.sample_rate
    assert out.duration == pytest.approx(buf.duration)
    assert np.all(np.isfinite(out.samples))


def test_render_equals_graph_driven_block_by_block():
    buf = sine_buffer(n=2500, sr=100, freq=7.0)
    settings = EffectSettings(distortion=0.5, echo=0.7, reverb=0.3)
    out = offline.render(buf, settings)

    graph = EffectGraph(settings, buf.sample_rate)
    scratch = np.empty(128)
    blocks = []
    for start in range(0, len(buf), 128):
        blocks.append(graph.process(buf.samples[start:start + 128], scratch).copy())
    np.testing.assert_array_equal(out.samples, np.concatenate(blocks))


def test_block_size_is_invisible():
    buf = sine_buffer(n=3000, sr=100, freq=3.0)
    settings = EffectSettings(distortion=0.2, echo=1.0, reverb=0.8)
    a = offline.render(buf, settings)
    b = offline.render(buf, settings, block_size=17)
    np.testing.assert_array_equal(a.samples, b.samples)


def test_out_of_range_settings_are_clamped_not_rejected():
    buf = sine_buffer(n=200)
    out = offline.render(buf, {"distortion": -0.3, "echo": 1.7, "reverb": -5})
    ref = offline.render(buf, EffectSettings(echo=1.0))
    np.testing.assert_array_equal(out.samples, ref.samples)


def test_source_buffer_is_untouched():
    buf = sine_buffer(n=500)
    before = buf.samples.copy()
    offline.render(buf, EffectSettings(0.9, 0.9, 0.9))
    np.testing.assert_array_equal(buf.samples, before)


def test_non_finite_output_raises(monkeypatch):
    class Exploding(EffectGraph):
        def run(self, samples, block_size=None):
            out = super().run(samples, block_size)
            out[3] = np.nan
            return out

    monkeypatch.setattr(offline, "EffectGraph", Exploding)
    with pytest.raises(RenderError):
        offline.render(sine_buffer(n=50))


def test_length_mismatch_raises(monkeypatch):
    class Truncating(EffectGraph):
        def run(self, samples, block_size=None):
            return super().run(samples, block_size)[:-1]

    monkeypatch.setattr(offline, "EffectGraph", Truncating)
    with pytest.raises(RenderError):
        offline.render(sine_buffer(n=50))


def test_safety_check():
    assert offline.safety_check(np.zeros(4)) == (True, "")
    assert not offline.safety_check(np.array([0.0, np.inf]))[0]
    assert not offline.safety_check(np.array([1e7]))[0]


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------
def test_write_wav_into_directory_uses_download_name(tmp_path):
    out = offline.render(sine_buffer(n=300), EffectSettings(reverb=0.5))
    path = offline.write_wav(tmp_path, out)
    assert os.path.basename(path) == DOWNLOAD_NAME
    data = open(path, "rb").read()
    assert data[:4] == b"RIFF"
    assert len(data) == pcm.WAV_HEADER_SIZE + 2 * 300
    assert data == out.to_wav()
    assert os.listdir(tmp_path) == [DOWNLOAD_NAME]


def test_write_wav_to_missing_directory_leaves_nothing(tmp_path):
    out = offline.render(sine_buffer(n=10))
    target = tmp_path / "missing" / "out.wav"
    with pytest.raises(RenderError):
        offline.write_wav(target, out)
    assert os.listdir(tmp_path) == []


def test_failed_write_removes_partial_file(tmp_path, monkeypatch):
    out = offline.render(sine_buffer(n=10))

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(offline.os, "replace", broken_replace)
    with pytest.raises(RenderError):
        offline.write_wav(tmp_path / "x.wav", out)
    assert os.listdir(tmp_path) == []


@pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
@pytest.mark.parametrize("mask,mode", [(0o022, 0o644), (0o077, 0o600), (0o002, 0o664)])
def test_written_file_follows_umask(tmp_path, mask, mode):
    out = offline.render(sine_buffer(n=10))
    old = os.umask(mask)
    try:
        path = offline.write_wav(tmp_path / "x.wav", out)
    finally:
        os.umask(old)
    assert os.stat(path).st_mode & 0o777 == mode
