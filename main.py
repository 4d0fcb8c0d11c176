#!/usr/bin/env python3
"""Launch the voice effects renderer from the project root.

Usage:
    uv run python main.py payload.b64 --echo 0.5 --reverb 0.3
"""

import sys

if __name__ == "__main__":
    from voicefx.main import main
    sys.exit(main())
