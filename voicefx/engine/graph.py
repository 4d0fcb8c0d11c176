"""Three-stage effect graph: waveshaper -> feedback delay -> multi-tap delay.

Signal flow:
    Input -> [Distortion: dry/wet waveshaper]
          -> [Echo: feedback delay, 0.4s, feedback = 0.7 * echo]
          -> [Reverb: 0.15s -> 0.35s delay cascade, dry/wet]
          -> Output

Distortion shapes the raw waveform before the time-based effects, and the
echo feeds the reverb so the reverb tail contains the repeats.

All state lives in flat numpy arrays (ring buffers plus int64 index cells)
that the Numba kernels mutate in place. A block of any size can be pushed
through without allocating, and because the state carries across blocks the
result does not depend on how the input was chunked. The real-time player
and the offline renderer both drive this same class.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numba import njit

from voicefx.engine.params import SR, BLOCK_SIZE, EffectSettings

STAGES = ("waveshaper", "feedback-delay", "multi-tap-delay")

CURVE_SIZE = 44100
ECHO_DELAY = 0.4        # seconds
ECHO_MAX_DELAY = 0.5    # seconds, ring buffer capacity
ECHO_DAMPING = 0.7      # feedback = ECHO_DAMPING * echo
REVERB_TAPS = (0.15, 0.35)  # seconds, in series


def make_distortion_curve(amount: float, n_samples: int = CURVE_SIZE) -> np.ndarray:
    """Waveshaping lookup table for distortion amount in [0, 1].

    y = (3 + k) * x * 20deg / (pi + k * |x|), k = 100 * amount,
    sampled at x_i = 2i/N - 1.
    """
    k = amount * 100.0
    deg = math.pi / 180.0
    x = np.arange(n_samples, dtype=np.float64) * 2.0 / n_samples - 1.0
    return (3.0 + k) * x * 20.0 * deg / (math.pi + k * np.abs(x))


def shape(x, curve):
    """Look up ``x`` in ``curve`` (scalar or array) with linear interpolation."""
    x = np.atleast_1d(np.asarray(x, dtype=np.float64))
    out = np.empty_like(x)
    _waveshape(x, out, curve, 1.0, 0.0)
    return out


@dataclass(frozen=True)
class Coefficients:
    """Immutable per-stage coefficients derived from one EffectSettings.

    A new instance is published for every settings change; processing code
    reads the reference once per block.
    """

    settings: EffectSettings
    curve: np.ndarray
    distortion_wet: float
    distortion_dry: float
    echo_feedback: float
    reverb_wet: float
    reverb_dry: float

    @classmethod
    def from_settings(cls, settings: EffectSettings) -> "Coefficients":
        curve = make_distortion_curve(settings.distortion)
        curve.flags.writeable = False
        return cls(
            settings=settings,
            curve=curve,
            distortion_wet=settings.distortion,
            distortion_dry=1.0 - settings.distortion,
            echo_feedback=settings.echo * ECHO_DAMPING,
            reverb_wet=settings.reverb,
            reverb_dry=1.0 - settings.reverb,
        )


# ---------------------------------------------------------------------------
# Stage kernels. ``block`` and ``out`` may be the same array.
# ---------------------------------------------------------------------------

@njit(cache=True)
def _waveshape(block, out, curve, wet, dry):
    last = len(curve) - 1
    half = 0.5 * last
    for i in range(len(block)):
        x = block[i]
        v = half * (x + 1.0)
        if v <= 0.0:
            shaped = curve[0]
        elif v >= last:
            shaped = curve[last]
        else:
            k = int(v)
            f = v - k
            shaped = (1.0 - f) * curve[k] + f * curve[k + 1]
        out[i] = dry * x + wet * shaped


@njit(cache=True)
def _feedback_delay(block, out, buf, write_idx, delay, feedback):
    size = len(buf)
    wi = write_idx[0]
    for i in range(len(block)):
        delayed = buf[(wi - delay) % size]
        y = block[i] + feedback * delayed
        buf[wi] = y
        out[i] = y
        wi = (wi + 1) % size
    write_idx[0] = wi


@njit(cache=True)
def _multitap_delay(block, out, buf1, buf2, idx, wet, dry):
    n1 = len(buf1)
    n2 = len(buf2)
    i1 = idx[0]
    i2 = idx[1]
    for i in range(len(block)):
        x = block[i]
        tap1 = buf1[i1]
        buf1[i1] = x
        i1 = (i1 + 1) % n1
        tap2 = buf2[i2]
        buf2[i2] = tap1
        i2 = (i2 + 1) % n2
        out[i] = dry * x + wet * tap2
    idx[0] = i1
    idx[1] = i2


def _samples(seconds, sr):
    return max(1, int(round(seconds * sr)))


class EffectGraph:
    """One instance of the effect chain, with its own delay-line state.

    Build a fresh graph for every playback session or offline render; only
    the coefficients may change during its lifetime (see set_settings).
    """

    stages = STAGES

    def __init__(self, settings: EffectSettings | None = None, sample_rate: int = SR):
        self.sample_rate = int(sample_rate)
        self._coeffs = Coefficients.from_settings(EffectSettings.coerce(settings))

        # Echo: feedback comb, read-before-write on a ring sized to capacity
        self.echo_delay = _samples(ECHO_DELAY, self.sample_rate)
        echo_len = max(self.echo_delay, _samples(ECHO_MAX_DELAY, self.sample_rate))
        self._echo_buf = np.zeros(echo_len)
        self._echo_idx = np.zeros(1, dtype=np.int64)

        # Reverb: two delay lines in series, each ring is exactly its delay
        self.reverb_delays = tuple(_samples(t, self.sample_rate) for t in REVERB_TAPS)
        self._tap_bufs = tuple(np.zeros(d) for d in self.reverb_delays)
        self._tap_idx = np.zeros(2, dtype=np.int64)

    @property
    def coefficients(self) -> Coefficients:
        return self._coeffs

    @property
    def settings(self) -> EffectSettings:
        return self._coeffs.settings

    def set_settings(self, settings) -> Coefficients:
        """Publish new coefficients. Safe to call while another thread processes.

        The curve and gains are computed here, in the caller's thread; the
        processing thread only ever sees a complete Coefficients object.
        """
        coeffs = Coefficients.from_settings(EffectSettings.coerce(settings))
        self._coeffs = coeffs
        return coeffs

    def process(self, block: np.ndarray, out: np.ndarray | None = None) -> np.ndarray:
        """Run one block through all three stages.

        ``out`` must be a float64 array at least as long as ``block``; when
        omitted a new one is allocated. Returns the filled slice of ``out``.
        """
        n = block.shape[0]
        if out is None:
            out = np.empty(n, dtype=np.float64)
        out = out[:n]
        c = self._coeffs  # one snapshot per block

        _waveshape(block, out, c.curve, c.distortion_wet, c.distortion_dry)
        _feedback_delay(out, out, self._echo_buf, self._echo_idx,
                        self.echo_delay, c.echo_feedback)
        _multitap_delay(out, out, self._tap_bufs[0], self._tap_bufs[1],
                        self._tap_idx, c.reverb_wet, c.reverb_dry)
        return out

    def run(self, samples: np.ndarray, block_size: int | None = None) -> np.ndarray:
        """Process a whole buffer and return a new array of the same length."""
        samples = np.ascontiguousarray(samples, dtype=np.float64)
        n = samples.shape[0]
        output = np.empty(n, dtype=np.float64)
        step = n if not block_size else int(block_size)
        for start in range(0, n, max(step, 1)):
            end = min(start + step, n)
            self.process(samples[start:end], output[start:end])
        return output

    def reset(self):
        """Clear all delay-line state, keeping the current coefficients."""
        self._echo_buf[:] = 0.0
        self._echo_idx[:] = 0
        for buf in self._tap_bufs:
            buf[:] = 0.0
        self._tap_idx[:] = 0


def warmup(sample_rate: int = SR):
    """Compile the kernels ahead of the first real-time block.

    Decoded buffers are read-only, which Numba types separately, so both
    variants are exercised.
    """
    graph = EffectGraph(EffectSettings(0.5, 0.5, 0.5), sample_rate)
    block = np.zeros(BLOCK_SIZE)
    scratch = np.empty(BLOCK_SIZE)
    graph.process(block, scratch)
    block.flags.writeable = False
    graph.process(block, scratch)
