"""
Toolchain discovery — record which compiler and binutils did the work.

Identity is captured once per compiler per process and cached.
"""
from __future__ import annotations

import platform
import subprocess
from pathlib import Path
from typing import Dict, List

from optstrip.io.schema import ToolchainIdentity

_cached_toolchains: Dict[str, ToolchainIdentity] = {}


def _run_quiet(cmd: List[str], timeout: int = 5) -> str:
    """Run a command and return stdout, or "" when it cannot run."""
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        return r.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        return ""


def _first_line(cmd: List[str]) -> str:
    raw = _run_quiet(cmd)
    return raw.splitlines()[0] if raw else "unknown"


def _os_release() -> str:
    try:
        for line in Path("/etc/os-release").read_text().splitlines():
            if line.startswith("PRETTY_NAME="):
                return line.split("=", 1)[1].strip('"')
    except OSError:
        pass
    return "unknown"


def capture_toolchain(compiler: str = "gcc", strip: str = "strip") -> ToolchainIdentity:
    """Capture toolchain identity for *compiler*. Cached after first call."""
    key = f"{compiler}:{strip}"
    cached = _cached_toolchains.get(key)
    if cached is not None:
        return cached

    identity = ToolchainIdentity(
        compiler=compiler,
        compiler_version=_first_line([compiler, "--version"]),
        binutils_version=_first_line(["ld", "--version"]),
        strip_version=_first_line([strip, "--version"]),
        os_release=_os_release(),
        kernel=platform.release() or "unknown",
        arch=platform.machine() or "unknown",
    )
    _cached_toolchains[key] = identity
    return identity
