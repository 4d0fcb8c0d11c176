#!/usr/bin/env python3
"""Apply distortion / echo / reverb to a base64 PCM payload and save a WAV.

Usage:
    uv run python -m voicefx.main payload.b64 [-o out.wav] [--echo 0.5] [--play]

The payload is little-endian 16-bit mono PCM, base64-encoded, with no
header ("-" reads it from stdin). Without -o the file is written as
voicefx-audio-effects.wav in the current directory.
"""

import argparse
import logging
import sys
import time

from voicefx.audio.render import render, write_wav
from voicefx.engine import pcm
from voicefx.engine.errors import VoiceFxError
from voicefx.engine.params import SCHEMA, SR, DOWNLOAD_NAME, EffectSettings
from voicefx.player import AudioPlayer

log = logging.getLogger("voicefx")


def read_payload(path):
    # bytes, so stray non-ASCII input fails as a DecodeError
    if path == "-":
        return sys.stdin.buffer.read()
    with open(path, "rb") as f:
        return f.read()


def build_parser():
    parser = argparse.ArgumentParser(description="Render voice effects on a PCM payload")
    parser.add_argument("input", help="File holding the base64 payload, or - for stdin")
    parser.add_argument("-o", "--output", default=DOWNLOAD_NAME,
                        help=f"Output WAV file or directory (default: {DOWNLOAD_NAME})")
    for p in SCHEMA:
        lo, hi = p.range
        parser.add_argument(f"--{p.key}", type=float, default=p.default,
                            help=f"{p.label} amount ({lo:g}-{hi:g}, default {p.default:g})")
    parser.add_argument("--sample-rate", type=int, default=SR,
                        help=f"Payload sample rate in Hz (default: {SR})")
    parser.add_argument("--play", action="store_true",
                        help="Also play the result on the default output device")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def play(buffer, settings):
    with AudioPlayer(settings, sample_rate=buffer.sample_rate) as player:
        player.load(buffer)
        player.toggle_playback()
        try:
            while player.is_playing:
                time.sleep(0.05)
        except KeyboardInterrupt:
            player.stop()
        player.join()


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(name)s %(levelname)s: %(message)s")

    settings = EffectSettings.from_dict({p.key: getattr(args, p.key) for p in SCHEMA})
    try:
        buffer = pcm.decode(read_payload(args.input), args.sample_rate)
        log.info("loaded %d samples, %.2fs, %d Hz", len(buffer), buffer.duration,
                 buffer.sample_rate)
        output = render(buffer, settings)
        path = write_wav(args.output, output)
        print(f"Saved: {path}")
        if args.play:
            play(buffer, settings)
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except VoiceFxError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
