"""
Verdict — derive cell status and expectation flags from observed facts.

Two layers:
  1. Artifact checks (check_artifact / check_strip) — does the binary look
     the way its variant or strip mode promises?
  2. Cell status (judge_cell) — did the build produce a usable artifact?

Expectation flags are warnings; only build-level failures fail a cell.
Policy rules reference the profile but never import core/.
"""
from __future__ import annotations

from typing import Iterable, List

from optstrip.io.schema import (
    BuildFlag,
    CellStatus,
    DebugPresence,
    PhaseStatus,
    StripMode,
    SymbolSummary,
)
from optstrip.policy.profile import VariantDelta

# Flags that make a cell FAILED
FATAL_FLAGS = frozenset({
    BuildFlag.NO_ARTIFACT,
    BuildFlag.NON_ELF_OUTPUT,
    BuildFlag.COMPILE_FAILED,
})


def check_artifact(
    delta: VariantDelta,
    debug: DebugPresence,
    symbols: SymbolSummary,
) -> List[BuildFlag]:
    """Compare a built artifact against its variant's expectations."""
    flags: List[BuildFlag] = []

    if delta.expect_debug and not debug.has_debug_sections:
        flags.append(BuildFlag.DEBUG_EXPECTED_MISSING)

    if delta.expect_symtab and not symbols.has_symtab:
        flags.append(BuildFlag.SYMBOLS_EXPECTED_MISSING)

    # A variant that promises no symbols must also carry no debug info
    if not delta.expect_symtab and (symbols.has_symtab or debug.has_debug_sections):
        flags.append(BuildFlag.STRIP_EXPECTED_MISSING)

    return flags


def check_strip(
    mode: StripMode,
    debug: DebugPresence,
    symbols: SymbolSummary,
    remaining_sections: Iterable[str],
    removed_sections: Iterable[str] = (),
) -> List[BuildFlag]:
    """Verify a strip result actually removed what its mode promises."""
    if mode == StripMode.DEBUG:
        ok = not debug.has_debug_sections
    elif mode == StripMode.ALL:
        ok = symbols.no_symbols and not debug.has_debug_sections
    else:
        remaining = set(remaining_sections)
        ok = not any(name in remaining for name in removed_sections)
    return [] if ok else [BuildFlag.STRIP_EXPECTED_MISSING]


def judge_cell(compile_status: PhaseStatus, flags: List[BuildFlag]) -> CellStatus:
    """
    Derive the cell status, appending BUILD_FAILED / TIMEOUT to *flags*
    where appropriate.
    """
    if compile_status == PhaseStatus.TIMEOUT:
        if BuildFlag.TIMEOUT not in flags:
            flags.append(BuildFlag.TIMEOUT)
        flags.append(BuildFlag.BUILD_FAILED)
        return CellStatus.TIMEOUT

    if any(f in FATAL_FLAGS for f in flags):
        flags.append(BuildFlag.BUILD_FAILED)
        return CellStatus.FAILED

    return CellStatus.SUCCESS
