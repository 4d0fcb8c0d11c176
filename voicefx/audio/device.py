"""Live output device: an owned handle around sd.OutputStream.

OutputDevice is opened once per playback session and closed on every exit
path. The render function is called from the PortAudio callback thread
with a float32 mono view to fill; it returns False once the source is
exhausted, which ends the stream after that block has played.
"""

from __future__ import annotations

import logging
from typing import Callable

import numpy as np

from voicefx.engine.errors import DeviceError
from voicefx.engine.params import SR, BLOCK_SIZE

log = logging.getLogger(__name__)

RenderFn = Callable[[np.ndarray], bool]


class OutputDevice:
    """Manages one callback-driven mono output stream."""

    def __init__(self, sr=SR, block_size=BLOCK_SIZE):
        self.sr = sr
        self.block_size = block_size
        self._stream = None

    @property
    def active(self) -> bool:
        return self._stream is not None

    def open(self, render: RenderFn, on_finished: Callable[[], None] | None = None):
        """Open and start the stream.

        Raises:
            DeviceError: PortAudio is missing, no output device exists, or
                the stream could not be created or started.
        """
        if self._stream is not None:
            raise DeviceError("output device is already open")
        try:
            import sounddevice as sd
        except OSError as exc:
            raise DeviceError(f"audio backend unavailable: {exc}") from exc

        def _callback(outdata, frames, time_info, status):
            if status:
                log.debug("stream status: %s", status)
            if not render(outdata[:, 0]):
                raise sd.CallbackStop()

        def _finished():
            if on_finished is not None:
                on_finished()

        try:
            stream = sd.OutputStream(
                samplerate=self.sr,
                channels=1,
                dtype='float32',
                blocksize=self.block_size,
                callback=_callback,
                finished_callback=_finished,
            )
        except (sd.PortAudioError, ValueError, OSError) as exc:
            raise DeviceError(f"could not open output stream: {exc}") from exc
        try:
            stream.start()
        except (sd.PortAudioError, OSError) as exc:
            stream.close(ignore_errors=True)
            raise DeviceError(f"could not start output stream: {exc}") from exc
        self._stream = stream
        log.debug("output stream open (%d Hz, block %d)", self.sr, self.block_size)

    def close(self):
        """Abort and release the stream. Safe to call more than once."""
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.abort(ignore_errors=True)
        finally:
            stream.close(ignore_errors=True)
        log.debug("output stream closed")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
