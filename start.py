"""Launch the dodder agent from a source checkout.

    python start.py list
    python start.py run llama3.1 "scaffold a flask api" --dir ./sandbox
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def run() -> int:
    from dodder.cli import main

    return main()


if __name__ == "__main__":
    raise SystemExit(run())
