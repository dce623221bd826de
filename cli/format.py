"""CLI wrapper: Format code with ruff. Pass --check to only report."""

from __future__ import annotations

import sys

from cli._runner import SOURCE_DIRS, run


def main() -> None:
    run([sys.executable, "-m", "ruff", "format", *SOURCE_DIRS, *sys.argv[1:]])
