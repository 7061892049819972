"""
Size comparison across a build matrix or a directory of binaries.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

from optstrip.io.schema import BuildReceipt, CellStatus, SizeReport, SizeRow

BASELINE_LABEL = "gcc/O0/debug"


def _finalize(
    entries: List[Tuple[str, str, int]],
    baseline_label: Optional[str],
) -> SizeReport:
    """Sort ascending by size and attach delta / ratio vs the baseline."""
    if not entries:
        return SizeReport()

    by_label = {label: size for label, _, size in entries}
    if baseline_label not in by_label:
        # Fall back to the largest binary
        baseline_label = max(entries, key=lambda e: (e[2], e[0]))[0]
    base = by_label[baseline_label]

    rows = [
        SizeRow(
            label=label,
            path=path,
            size_bytes=size,
            delta_bytes=size - base,
            ratio=round(size / base, 4) if base else 0.0,
        )
        for label, path, size in sorted(entries, key=lambda e: (e[2], e[0]))
    ]
    return SizeReport(baseline_label=baseline_label, rows=rows)


def compare_receipt(
    receipt: BuildReceipt,
    artifacts_dir: Path,
    baseline_label: str = BASELINE_LABEL,
) -> SizeReport:
    """One row per successful cell of *receipt*."""
    entries = [
        (cell.label, str(artifacts_dir / cell.artifact.path_rel), cell.artifact.size_bytes)
        for cell in receipt.builds
        if cell.status == CellStatus.SUCCESS and cell.artifact is not None
    ]
    return _finalize(entries, baseline_label)


def compare_directory(directory: Path, baseline: Optional[str] = None) -> SizeReport:
    """One row per regular file in *directory* (non-recursive)."""
    if not directory.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")
    entries = [
        (p.name, str(p), p.stat().st_size)
        for p in sorted(directory.iterdir())
        if p.is_file()
    ]
    return _finalize(entries, baseline)


def render_table(report: SizeReport) -> str:
    """Fixed-width text table, smallest binary first."""
    if not report.rows:
        return "(no binaries)"
    width = max(len("binary"), *(len(r.label) for r in report.rows))
    lines = [
        f"{'binary':<{width}}  {'bytes':>10}  {'delta':>10}  {'ratio':>6}",
        f"{'-' * width}  {'-' * 10}  {'-' * 10}  {'-' * 6}",
    ]
    for r in report.rows:
        marker = " *" if r.label == report.baseline_label else ""
        lines.append(
            f"{r.label:<{width}}  {r.size_bytes:>10}  {r.delta_bytes:>+10}  {r.ratio:>6.3f}{marker}"
        )
    lines.append(f"(* baseline: {report.baseline_label})")
    return "\n".join(lines)
