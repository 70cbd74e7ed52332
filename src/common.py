"""Common subprocess utilities for backend tooling."""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: Optional[int] = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)


def stream_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    env: Optional[dict] = None,
    on_line: Optional[Callable[[str], None]] = None
) -> tuple[int, str]:
    """Run a command, echoing its combined stdout/stderr line by line.

    No timeout: the command runs until the backend finishes.

    Returns:
        (returncode, output) where output is the full combined text
    """
    logger.debug(f"Streaming: {' '.join(cmd)}")
    emit = on_line or _echo
    lines = []
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except OSError as e:
        return -1, str(e)

    assert proc.stdout is not None
    with proc.stdout:
        for line in proc.stdout:
            line = line.rstrip('\n')
            lines.append(line)
            emit(line)
    rc = proc.wait()
    return rc, '\n'.join(lines)


def _echo(line: str) -> None:
    print(line, file=sys.stdout, flush=True)


def command_available(cmd: list[str], timeout: int = 30) -> bool:
    """Check that a command can be invoked and exits 0."""
    rc, _, _ = run_command(cmd, timeout=timeout)
    return rc == 0
