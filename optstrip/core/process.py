"""
Process runner — execute one external tool and record the outcome.

Every compile / strip / objdump / verification run goes through
``run_tool`` so that exit codes, timings and logs are captured the same
way everywhere.  Tool failures never raise: a non-zero exit, a timeout or
a missing executable all come back as a ``CommandResult``.
"""
from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path
from typing import List, Optional, Tuple

from optstrip.io.schema import CommandResult, PhaseStatus

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000


def _execute(
    cmd: List[str],
    cwd: Optional[Path],
    timeout: int,
) -> Tuple[int, str, str, int, bool]:
    """Run *cmd*; returns (exit_code, stdout, stderr, duration_ms, timed_out)."""
    t0 = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        duration = int((time.monotonic() - t0) * 1000)
        return result.returncode, result.stdout, result.stderr, duration, False
    except subprocess.TimeoutExpired:
        duration = int((time.monotonic() - t0) * 1000)
        return -1, "", f"TIMEOUT after {timeout}s", duration, True
    except OSError as e:
        # Missing executable, permission denied, exec format error
        duration = int((time.monotonic() - t0) * 1000)
        return -1, "", str(e), duration, False


def _status(exit_code: int, timed_out: bool) -> PhaseStatus:
    if timed_out:
        return PhaseStatus.TIMEOUT
    if exit_code == 0:
        return PhaseStatus.SUCCESS
    return PhaseStatus.FAILED


def run_tool(
    cmd: List[str],
    timeout: int,
    cwd: Optional[Path] = None,
    logs_dir: Optional[Path] = None,
    log_stem: str = "",
    rel_root: Optional[Path] = None,
) -> CommandResult:
    """
    Run an external tool and return its ``CommandResult``.

    When *logs_dir* is given, non-empty stdout / stderr are written to
    ``<logs_dir>/<log_stem>.stdout`` / ``.stderr`` and the paths are
    recorded relative to *rel_root* (or *logs_dir* when unset).
    """
    cmd_str = " ".join(cmd)
    logger.debug("Running: %s", cmd_str)

    exit_code, stdout, stderr, duration, timed_out = _execute(cmd, cwd, timeout)

    stdout_rel = None
    stderr_rel = None
    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        root = rel_root or logs_dir
        stem = log_stem or Path(cmd[0]).name
        # Only write log files if they have content
        if stdout:
            stdout_file = logs_dir / f"{stem}.stdout"
            stdout_file.write_text(stdout)
            stdout_rel = stdout_file.relative_to(root).as_posix()
        if stderr:
            stderr_file = logs_dir / f"{stem}.stderr"
            stderr_file.write_text(stderr)
            stderr_rel = stderr_file.relative_to(root).as_posix()

    status = _status(exit_code, timed_out)
    if status == PhaseStatus.FAILED:
        logger.debug("Command failed (exit %d): %s", exit_code, cmd_str)

    return CommandResult(
        command=cmd_str,
        exit_code=exit_code,
        stdout_path_rel=stdout_rel,
        stderr_path_rel=stderr_rel,
        stderr_tail=stderr[-STDERR_TAIL_CHARS:],
        duration_ms=duration,
        status=status,
    )


def run_capture(
    cmd: List[str],
    timeout: int,
    cwd: Optional[Path] = None,
) -> Tuple[CommandResult, str]:
    """Like ``run_tool`` but also hands back the captured stdout."""
    cmd_str = " ".join(cmd)
    logger.debug("Running: %s", cmd_str)
    exit_code, stdout, stderr, duration, timed_out = _execute(cmd, cwd, timeout)

    result = CommandResult(
        command=cmd_str,
        exit_code=exit_code,
        stderr_tail=stderr[-STDERR_TAIL_CHARS:],
        duration_ms=duration,
        status=_status(exit_code, timed_out),
    )
    return result, stdout
