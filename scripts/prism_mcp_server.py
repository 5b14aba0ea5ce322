#!/usr/bin/env python3
"""Prism MCP protocol server over stdio (spawned by prism-connect)."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from prism_lib.stdio_server import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
