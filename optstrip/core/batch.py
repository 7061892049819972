"""
Batch Symbol Stripper — strip every entry of a directory two ways.

For each entry of the input directory (non-recursive, no file-type
filtering) two new files land in the output directory:

    <name>_debug_stripped   strip --strip-debug
    <name>_all_stripped     strip --strip-all

Originals are never touched.  An entry the strip tool rejects (a
subdirectory, a text file) is recorded as failed and the loop moves on.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from optstrip.core.stripper import strip_binary
from optstrip.io.schema import BatchEntry, BatchStripReport, StripMode, now_iso
from optstrip.io.writer import write_json
from optstrip.policy.profile import StripProfile

logger = logging.getLogger(__name__)


def batch_strip(
    input_dir: Path,
    output_dir: Path,
    profile: Optional[StripProfile] = None,
    strip_tool: str = "strip",
    timeout: int = 120,
    on_entry: Optional[Callable[[BatchEntry], None]] = None,
    write_report: bool = False,
) -> BatchStripReport:
    """
    Strip every entry of *input_dir* into *output_dir*.

    *output_dir* is created if absent and is never itself an entry, even
    when it lies inside *input_dir*.  *on_entry* is called once per
    processed entry, in sorted name order, as soon as it finishes.

    Raises
    ------
    FileNotFoundError
        If *input_dir* does not exist.
    NotADirectoryError
        If *input_dir* is not a directory.
    """
    profile = profile or StripProfile.v1()
    if not input_dir.exists():
        raise FileNotFoundError(f"Input directory not found: {input_dir}")
    if not input_dir.is_dir():
        raise NotADirectoryError(f"Not a directory: {input_dir}")

    # output_dir may sit inside input_dir; it is never an entry
    entries = [
        p for p in sorted(input_dir.iterdir())
        if p.resolve() != output_dir.resolve()
    ]
    output_dir.mkdir(parents=True, exist_ok=True)
    report = BatchStripReport(
        input_dir=str(input_dir),
        output_dir=str(output_dir),
        debug_suffix=profile.debug_suffix,
        all_suffix=profile.all_suffix,
        started_at=now_iso(),
    )

    for entry_path in entries:
        name = entry_path.name
        entry = BatchEntry(
            name=name,
            debug=strip_binary(
                entry_path,
                output_dir / profile.debug_name(name),
                StripMode.DEBUG,
                strip_tool=strip_tool,
                timeout=timeout,
            ),
            all=strip_binary(
                entry_path,
                output_dir / profile.all_name(name),
                StripMode.ALL,
                strip_tool=strip_tool,
                timeout=timeout,
            ),
        )
        report.entries.append(entry)

        if entry.ok:
            logger.info(entry.status_line())
        else:
            logger.warning(entry.status_line())
        if on_entry is not None:
            on_entry(entry)

    report.finished_at = now_iso()
    if write_report:
        write_json(report, output_dir / profile.report_name)

    logger.info(
        f"Batch strip finished: {report.processed} entries, {report.failed} failed"
    )
    return report
