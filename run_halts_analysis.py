#!/usr/bin/env python3
"""Run the trading-halts count-model study from a source checkout."""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent
SRC_PATH = REPO_ROOT / "src"
for path in (SRC_PATH, REPO_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from halts_analysis.pipeline import main  # noqa: E402

if __name__ == "__main__":
    main()
