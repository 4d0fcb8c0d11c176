"""AudioPlayer: decode, play live through the effect graph, export.

States:
    IDLE -> PREPARING -> READY -> PLAYING -> (STOPPED | ENDED) -> READY

At most one playback session exists at a time. A session owns its own
EffectGraph and OutputDevice; both are dropped when it ends. Effect changes
during playback publish new coefficients to the live graph, which picks
them up at the next block boundary.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading

import numpy as np

from voicefx.audio import render as offline
from voicefx.audio.device import OutputDevice
from voicefx.engine import pcm
from voicefx.engine.errors import DecodeError, DeviceError, RenderError, VoiceFxError
from voicefx.engine.graph import EffectGraph, warmup
from voicefx.engine.params import SR, BLOCK_SIZE, EffectSettings
from voicefx.engine.pcm import SampleBuffer

log = logging.getLogger(__name__)


class PlayerState(enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    READY = "ready"
    PLAYING = "playing"
    STOPPED = "stopped"
    ENDED = "ended"


class _Session:
    """Live state of one playback: source, graph, device and read cursor."""

    def __init__(self, buffer: SampleBuffer, graph: EffectGraph, device, block_size: int):
        self.buffer = buffer
        self.graph = graph
        self.device = device
        self.pos = 0
        self.finished = False
        self._scratch = np.zeros(block_size)

    def render(self, out) -> bool:
        """Fill ``out`` with the next processed frames. Runs on the audio thread.

        Returns False once the source is exhausted; the tail of the final
        block is zero-filled.
        """
        samples = self.buffer.samples
        start = self.pos
        n = max(0, min(out.shape[0], samples.shape[0] - start))
        step = self._scratch.shape[0]
        done = 0
        while done < n:
            m = min(n - done, step)
            block = samples[start + done:start + done + m]
            out[done:done + m] = self.graph.process(block, self._scratch)
            done += m
        out[n:] = 0.0
        self.pos = start + n
        return self.pos < samples.shape[0]


class AudioPlayer:
    """Owns one decoded buffer, the current effect settings and at most one session."""

    def __init__(self, settings=None, sample_rate: int = SR, block_size: int = BLOCK_SIZE,
                 device_factory=OutputDevice):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self._device_factory = device_factory
        self._settings = EffectSettings.coerce(settings)
        self._buffer: SampleBuffer | None = None
        self._session: _Session | None = None
        self._state = PlayerState.IDLE
        self._lock = threading.RLock()
        self._reaper: threading.Thread | None = None
        self._render_queue = queue.Queue()

    # -- properties ---------------------------------------------------------

    @property
    def state(self) -> PlayerState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is PlayerState.PLAYING

    @property
    def settings(self) -> EffectSettings:
        return self._settings

    @property
    def buffer(self) -> SampleBuffer | None:
        return self._buffer

    @property
    def playback_fraction(self) -> float:
        """Current playback position as fraction 0-1."""
        session = self._session
        if session is None or len(session.buffer) == 0:
            return 0.0
        return min(1.0, session.pos / len(session.buffer))

    def _set_state(self, state: PlayerState):
        if state is not self._state:
            log.debug("%s -> %s", self._state.value, state.value)
            self._state = state

    # -- source -------------------------------------------------------------

    def prepare(self, payload) -> SampleBuffer:
        """Decode a base64 PCM payload and make it the current source.

        Any running session is stopped first. On a bad payload the player
        is left IDLE with no buffer and the DecodeError is re-raised.
        """
        with self._lock:
            self._teardown()
            self._buffer = None
            self._set_state(PlayerState.PREPARING)
            try:
                buffer = pcm.decode(payload, self.sample_rate)
            except DecodeError as exc:
                log.warning("could not decode payload: %s", exc)
                self._set_state(PlayerState.IDLE)
                raise
            return self._install(buffer)

    def load(self, buffer: SampleBuffer) -> SampleBuffer:
        """Use an already decoded buffer as the source."""
        with self._lock:
            self._teardown()
            self._set_state(PlayerState.PREPARING)
            return self._install(buffer)

    def _install(self, buffer):
        warmup(buffer.sample_rate)
        self._buffer = buffer
        log.debug("prepared %d samples (%.2fs)", len(buffer), buffer.duration)
        self._set_state(PlayerState.READY)
        return buffer

    # -- transport ----------------------------------------------------------

    def toggle_playback(self) -> PlayerState:
        """Stop if playing, otherwise start a fresh session.

        No-op without a prepared buffer. Raises DeviceError if the output
        could not be opened; the player stays usable for a retry.
        """
        with self._lock:
            session = self._session
            if session is not None and not session.finished:
                self.stop()
                return self._state
            if self._buffer is None:
                return self._state
            if session is not None:
                self._teardown()
                self._set_state(PlayerState.ENDED)
            self._start()
            return self._state

    def _start(self):
        buffer = self._buffer
        graph = EffectGraph(self._settings, buffer.sample_rate)
        device = self._device_factory(buffer.sample_rate, self.block_size)
        session = _Session(buffer, graph, device, self.block_size)
        try:
            device.open(session.render, lambda: self._on_finished(session))
        except DeviceError as exc:
            device.close()
            log.warning("playback did not start: %s", exc)
            raise
        self._session = session
        self._set_state(PlayerState.PLAYING)

    def stop(self):
        """Stop the current session. Safe no-op when nothing is playing."""
        with self._lock:
            if self._teardown():
                self._set_state(PlayerState.STOPPED)
                self._set_state(PlayerState.READY)

    def _teardown(self) -> bool:
        session, self._session = self._session, None
        if session is None:
            return False
        session.device.close()
        return True

    def _on_finished(self, session):
        # Called from the audio thread: no locking here, hand off the release.
        session.finished = True
        self._reaper = threading.Thread(target=self._reap, args=(session,), daemon=True)
        self._reaper.start()

    def _reap(self, session):
        with self._lock:
            if self._session is session:
                self._session = None
                self._set_state(PlayerState.ENDED)
            session.device.close()

    def join(self, timeout=None):
        """Wait for a device release scheduled by a natural end of buffer."""
        reaper = self._reaper
        if reaper is not None:
            reaper.join(timeout)

    # -- effects ------------------------------------------------------------

    def update_effects(self, settings=None, **changes) -> EffectSettings:
        """Change effect settings; applied live if a session is running.

        Accepts an EffectSettings, a mapping, or keyword overrides. Values
        are clamped to [0, 1].
        """
        with self._lock:
            new = self._settings if settings is None else EffectSettings.coerce(settings)
            if changes:
                new = new.replace(**changes)
            self._settings = new
            if self._session is not None:
                self._session.graph.set_settings(new)
            return new

    # -- offline ------------------------------------------------------------

    def _snapshot(self):
        with self._lock:
            if self._buffer is None:
                raise RenderError("no audio prepared")
            return self._buffer, self._settings

    def render(self) -> offline.RenderedOutput:
        buffer, settings = self._snapshot()
        return offline.render(buffer, settings)

    def render_async(self, callback=None) -> threading.Thread:
        """Render in background thread. Calls callback(output) on completion."""
        buffer, settings = self._snapshot()

        def _do_render():
            try:
                output = offline.render(buffer, settings)
            except VoiceFxError as e:
                self._render_queue.put(('error', str(e)))
                return
            self._render_queue.put(('done', output))
            if callback:
                callback(output)

        t = threading.Thread(target=_do_render, daemon=True)
        t.start()
        return t

    def check_render_result(self):
        """Non-blocking check for render completion. Returns (status, data) or None."""
        try:
            return self._render_queue.get_nowait()
        except queue.Empty:
            return None

    def export_wav(self, path=None) -> str:
        """Render with the current settings and write a WAV file."""
        return offline.write_wav(path, self.render())

    # -- lifetime -----------------------------------------------------------

    def close(self):
        """Release the session and the buffer."""
        with self._lock:
            self._teardown()
            self._buffer = None
            self._set_state(PlayerState.IDLE)
        self.join()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
