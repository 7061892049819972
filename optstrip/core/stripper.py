"""
Stripper — remove debug info, all symbols, or named sections from one binary.

The input binary is never modified: every operation writes a new file.

    debug     strip --strip-debug -o <out> <in>
    all       strip --strip-all   -o <out> <in>
    sections  objcopy --remove-section=<name> ... <in> <out>
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from elftools.common.exceptions import ELFError

from optstrip.core.elf_inspect import (
    check_debug_sections,
    is_elf,
    list_sections,
    summarize_symbols,
)
from optstrip.core.process import run_tool
from optstrip.io.schema import BuildFlag, StripMode, StripResult
from optstrip.policy.verdict import check_strip

logger = logging.getLogger(__name__)


def build_strip_command(
    input_path: Path,
    output_path: Path,
    mode: StripMode,
    sections: Sequence[str] = (),
    strip_tool: str = "strip",
    objcopy_tool: str = "objcopy",
) -> List[str]:
    """Command line for one strip operation."""
    if mode == StripMode.DEBUG:
        return [strip_tool, "--strip-debug", "-o", str(output_path), str(input_path)]
    if mode == StripMode.ALL:
        return [strip_tool, "--strip-all", "-o", str(output_path), str(input_path)]
    if not sections:
        raise ValueError("StripMode.SECTIONS requires at least one section name")
    return (
        [objcopy_tool]
        + [f"--remove-section={name}" for name in sections]
        + [str(input_path), str(output_path)]
    )


def strip_binary(
    input_path: Path,
    output_path: Path,
    mode: StripMode,
    sections: Sequence[str] = (),
    strip_tool: str = "strip",
    objcopy_tool: str = "objcopy",
    timeout: int = 120,
    logs_dir: Optional[Path] = None,
) -> StripResult:
    """
    Strip *input_path* into *output_path*.

    Tool failures (not a binary, tool missing, timeout) are recorded in the
    returned result with STRIP_FAILED; only a missing input raises.
    """
    if not input_path.exists() and not input_path.is_symlink():
        raise FileNotFoundError(f"Binary not found: {input_path}")

    cmd = build_strip_command(input_path, output_path, mode, sections, strip_tool, objcopy_tool)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    result = StripResult(
        input_path=str(input_path),
        output_path=str(output_path),
        mode=mode,
        removed_sections=list(sections) if mode == StripMode.SECTIONS else [],
        size_before=input_path.stat().st_size if input_path.is_file() else 0,
    )
    result.command = run_tool(
        cmd,
        timeout=timeout,
        logs_dir=logs_dir,
        log_stem=f"strip.{input_path.name}.{mode.value}",
    )

    if not result.command.ok or not output_path.is_file():
        result.flags.append(BuildFlag.STRIP_FAILED)
        logger.debug(
            f"{mode.value} strip failed for {input_path}: {result.command.stderr_tail.strip()}"
        )
        return result

    result.size_after = output_path.stat().st_size
    if is_elf(output_path):
        try:
            remaining = [s.name for s in list_sections(output_path)]
        except (ELFError, OSError) as e:
            logger.warning(f"Cannot read sections of {output_path}: {e}")
            remaining = []
        result.debug_after = check_debug_sections(output_path)
        result.symbols_after = summarize_symbols(output_path)
        result.flags.extend(
            check_strip(
                mode,
                result.debug_after,
                result.symbols_after,
                remaining,
                result.removed_sections,
            )
        )
    return result
