"""Offline rendering: run the effect graph over a whole buffer, no device.

The output is sized exactly to the input (no tail), has the input's sample
rate, and is produced by the same EffectGraph the player streams through.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from dataclasses import dataclass

import numpy as np

from voicefx.engine import pcm
from voicefx.engine.errors import RenderError
from voicefx.engine.graph import EffectGraph
from voicefx.engine.params import EffectSettings, DOWNLOAD_NAME
from voicefx.engine.pcm import SampleBuffer

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedOutput:
    samples: np.ndarray
    sample_rate: int

    def __len__(self):
        return self.samples.shape[0]

    @property
    def duration(self) -> float:
        return len(self) / self.sample_rate

    def to_wav(self) -> bytes:
        return pcm.encode(self.samples, self.sample_rate)


def safety_check(output):
    """Reject non-finite or exploded output.

    Returns (ok, error_message).
    """
    if not np.all(np.isfinite(output)):
        return False, "output diverged (non-finite values)"
    peak = np.max(np.abs(output)) if len(output) else 0.0
    if peak > 1e6:
        return False, f"output exploded (peak={peak:.0e})"
    return True, ""


def render(buffer: SampleBuffer, settings=None, block_size=None) -> RenderedOutput:
    """Render ``buffer`` through a fresh effect graph.

    Args:
        buffer: decoded source audio
        settings: EffectSettings or mapping (clamped); defaults to bypass
        block_size: optional chunking; the result is identical either way

    Raises:
        RenderError: the graph failed or produced unusable output.
    """
    settings = EffectSettings.coerce(settings)
    t0 = time.perf_counter()
    try:
        graph = EffectGraph(settings, buffer.sample_rate)
        samples = graph.run(buffer.samples, block_size)
    except (ValueError, MemoryError) as exc:
        raise RenderError(f"render failed: {exc}") from exc

    if samples.shape[0] != len(buffer):
        raise RenderError(
            f"rendered {samples.shape[0]} samples, expected {len(buffer)}")
    ok, msg = safety_check(samples)
    if not ok:
        raise RenderError(msg)

    elapsed = time.perf_counter() - t0
    rtf = buffer.duration / elapsed if elapsed > 0 else float('inf')
    log.info("render %.1fs audio in %.3fs (%.0fx RT) %s",
             buffer.duration, elapsed, rtf, settings.to_dict())
    samples.flags.writeable = False
    return RenderedOutput(samples, buffer.sample_rate)


def _umask():
    # mkstemp creates files 0600; exports get the mode open() would give them
    mask = os.umask(0)
    os.umask(mask)
    return mask


def write_wav(path, output: RenderedOutput) -> str:
    """Write ``output`` as a 16-bit WAV at ``path``, atomically.

    ``path`` may be a directory, in which case DOWNLOAD_NAME is used.
    Nothing is left behind at ``path`` if encoding or writing fails.
    """
    path = os.fspath(path) if path is not None else DOWNLOAD_NAME
    if os.path.isdir(path):
        path = os.path.join(path, DOWNLOAD_NAME)
    directory = os.path.dirname(os.path.abspath(path))

    data = output.to_wav()
    try:
        fd, tmp = tempfile.mkstemp(suffix=".wav.part", dir=directory)
    except OSError as exc:
        raise RenderError(f"could not write {path}: {exc}") from exc
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, 0o666 & ~_umask())
        os.replace(tmp, path)
    except OSError as exc:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise RenderError(f"could not write {path}: {exc}") from exc
    log.info("saved %s (%.2fs, %d Hz)", path, output.duration, output.sample_rate)
    return path
