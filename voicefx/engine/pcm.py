"""PCM codec: base64 little-endian int16 mono <-> float samples <-> WAV bytes.

Payloads have no header, the sample rate is supplied by the caller.
WAV output is the canonical 44-byte RIFF header followed by int16 data.
"""

from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass

import numpy as np
from scipy.io import wavfile

from voicefx.engine.errors import DecodeError
from voicefx.engine.params import SR

WAV_HEADER_SIZE = 44


@dataclass(frozen=True)
class SampleBuffer:
    """Decoded mono audio. ``samples`` is a read-only float64 array."""

    samples: np.ndarray
    sample_rate: int = SR
    channels: int = 1

    def __post_init__(self):
        samples = np.array(self.samples, dtype=np.float64)
        if samples.ndim != 1:
            raise ValueError("SampleBuffer is mono: expected a 1-D array")
        if self.sample_rate <= 0:
            raise ValueError(f"sample rate must be positive, got {self.sample_rate}")
        samples.flags.writeable = False
        object.__setattr__(self, "samples", samples)

    def __len__(self):
        return self.samples.shape[0]

    @property
    def duration(self) -> float:
        return len(self) / self.sample_rate


def decode(text: str | bytes, sample_rate: int = SR) -> SampleBuffer:
    """Decode a base64 int16 PCM payload into a normalized SampleBuffer.

    Each int16 is divided by 32768, so samples land in [-1.0, 1.0).
    ASCII whitespace anywhere in the text is ignored (MIME line wrapping)
    and missing ``=`` padding is restored.

    Raises:
        DecodeError: the text is not valid base64, the decoded byte
            count is zero or odd, or ``sample_rate`` is not positive.
    """
    if int(sample_rate) <= 0:
        raise DecodeError(f"sample rate must be positive, got {sample_rate}")
    if isinstance(text, str):
        try:
            text = text.encode("ascii")
        except UnicodeEncodeError as exc:
            raise DecodeError("payload is not valid base64: non-ASCII text") from exc
    elif isinstance(text, (bytes, bytearray)):
        text = bytes(text)
    else:
        raise DecodeError(f"expected base64 text, got {type(text).__name__}")

    text = b"".join(text.split())
    if len(text) % 4 == 1:
        raise DecodeError(f"payload is not valid base64: {len(text)} characters")
    text += b"=" * (-len(text) % 4)

    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"payload is not valid base64: {exc}") from exc

    if len(raw) == 0:
        raise DecodeError("payload is empty")
    if len(raw) % 2:
        raise DecodeError(f"payload has {len(raw)} bytes, int16 frames need an even count")

    ints = np.frombuffer(raw, dtype="<i2")
    return SampleBuffer(ints.astype(np.float64) / 32768.0, int(sample_rate))


def to_int16(samples) -> np.ndarray:
    """Float samples -> little-endian int16.

    Clamped to [-1, 1]; negative values scale by 32768, non-negative by
    32767, then round to nearest. NaN maps to silence.
    """
    x = np.nan_to_num(np.asarray(samples, dtype=np.float64), nan=0.0)
    x = np.clip(x, -1.0, 1.0)
    scaled = np.where(x < 0.0, x * 32768.0, x * 32767.0)
    return np.round(scaled).astype("<i2")


def encode(samples, sample_rate: int = SR) -> bytes:
    """Encode float samples as a mono 16-bit PCM WAV file (bytes)."""
    out = io.BytesIO()
    wavfile.write(out, int(sample_rate), to_int16(samples))
    return out.getvalue()


def encode_base64(samples) -> str:
    """Inverse of decode's payload format (no header). Used for fixtures and the CLI."""
    return base64.b64encode(to_int16(samples).tobytes()).decode("ascii")
