"""Typed failures raised by the effects engine.

Callers only ever need to catch VoiceFxError; the subclasses say which
step failed and whether a retry makes sense.
"""


class VoiceFxError(Exception):
    """Base class for every failure the engine reports."""


class DecodeError(VoiceFxError, ValueError):
    """Malformed or truncated PCM payload. Not retried."""


class DeviceError(VoiceFxError):
    """Output device unavailable or stream creation failed. Retriable."""


class RenderError(VoiceFxError):
    """Offline render did not produce a complete, finite buffer."""
