"""Test helpers for operator-bundle tools."""

import asyncio
import os
from pathlib import Path
import subprocess
import sys

REPO_ROOT = Path(__file__).parent.parent.parent.absolute()


class CommandError(Exception):
    """Raised when the command exits with an error."""

    def __init__(self, returncode: int, stderr: str) -> None:
        super().__init__(f"Command failed with return code {returncode}: {stderr}")
        self.returncode = returncode
        self.stderr = stderr


async def run_command(
    args: list[str], cwd: Path | None = None, stdin: bytes | None = None
) -> str:
    """Run operator-bundle in a subprocess and return stdout.

    Input is only piped to the command when `stdin` is set.
    """
    env = {
        **os.environ,
        "PYTHONPATH": os.pathsep.join(
            [str(REPO_ROOT)] + [p for p in [os.environ.get("PYTHONPATH")] if p]
        ),
    }
    proc = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        "operator_bundle",
        *args,
        stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=cwd,
        env=env,
    )
    out, err = await proc.communicate(stdin)
    if proc.returncode:
        raise CommandError(proc.returncode, err.decode("utf-8"))
    return out.decode("utf-8")
