"""
Shared helper for the crudkit CLI wrappers.

Each wrapper builds one command line and hands it to ``run``, which
executes it with the current interpreter's environment and exits with
the command's status.
"""

from __future__ import annotations

import shlex
import subprocess
import sys
from collections.abc import Sequence

# Directories checked by the lint and format wrappers
SOURCE_DIRS = ("crudkit", "tests", "cli")


def run(cmd: Sequence[str]) -> None:
    """
    Run ``cmd`` and exit with its return code.

    Args:
        cmd: Command and arguments to execute

    Example:
        >>> run([sys.executable, "-m", "pytest", "-q"])
    """
    print(f"$ {shlex.join(cmd)}", file=sys.stderr)
    try:
        result = subprocess.run(cmd)
    except FileNotFoundError:
        print(f"Command not found: {cmd[0]}", file=sys.stderr)
        raise SystemExit(127) from None
    raise SystemExit(result.returncode)
