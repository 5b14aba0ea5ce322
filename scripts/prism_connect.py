#!/usr/bin/env python3
"""Connect an IDE to the Prism context engine over stdio."""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
# A source checkout is not importable from the child's cwd; run the sibling script instead.
os.environ.setdefault("PRISM_MCP_SERVER_PATH", str(ROOT / "scripts" / "prism_mcp_server.py"))

from prism_lib.connector import main  # noqa: E402


if __name__ == "__main__":
    main()
