"""Allow running the package with ``python -m prompt_dj``."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Sequence

if __package__ in {None, ""}:  # pragma: no cover - executed as a plain script
    package_dir = Path(__file__).resolve().parent
    src_str = str(package_dir.parent)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)
    __package__ = "prompt_dj"

from .cli import main as cli_main


def main(argv: Sequence[str] | None = None) -> None:
    cli_main(argv)


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
