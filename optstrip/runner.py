"""
optstrip runner — CLI over the build / verify / inspect / strip pipeline.

Every subcommand is a thin wrapper over one library call so the same
steps can be driven programmatically.  Exit code is 0 on success and 1
on any failure.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from optstrip import __version__
from optstrip.config import Settings, get_settings
from optstrip.core.batch import batch_strip
from optstrip.core.compiler import BuildMatrixJob, verify_receipt
from optstrip.core.elf_inspect import inspect_binary
from optstrip.core.sizes import compare_directory, compare_receipt, render_table
from optstrip.core.source import source_path, write_source
from optstrip.core.stripper import strip_binary
from optstrip.io.schema import (
    BatchEntry,
    BuildExtras,
    BuildFlag,
    Compiler,
    OptLevel,
    StripMode,
    VariantType,
)
from optstrip.io.writer import load_receipt, write_receipt

logger = logging.getLogger(__name__)


# ── Subcommands ──────────────────────────────────────────────────────────────

def cmd_prepare(args: argparse.Namespace, settings: Settings) -> int:
    workspace = Path(args.workspace or settings.WORKSPACE)
    identity = write_source(workspace, Path(args.source) if args.source else None)
    print(f"Wrote {workspace / identity.entry.path_rel} (sha256={identity.entry.sha256[:12]})")
    return 0


def cmd_build(args: argparse.Namespace, settings: Settings) -> int:
    workspace = Path(args.workspace or settings.WORKSPACE)
    if args.source or not source_path(workspace).is_file():
        write_source(workspace, Path(args.source) if args.source else None)

    compilers = [Compiler(c) for c in args.compiler] if args.compiler else [Compiler(settings.CC)]
    job = BuildMatrixJob(
        workspace_dir=workspace,
        compilers=compilers,
        optimizations=[OptLevel(o) for o in args.opt] if args.opt else None,
        variants=[VariantType(v) for v in args.variant] if args.variant else None,
        extras=BuildExtras(lto=args.lto, pgo=args.pgo),
        expected_output=args.expect,
        verify=not args.no_verify,
        strip_tool=settings.STRIP,
        llvm_profdata=settings.LLVM_PROFDATA,
        timeout=settings.COMMAND_TIMEOUT,
        run_timeout=settings.RUN_TIMEOUT,
    )
    if args.clean:
        job.clean()
    receipt = job.execute()

    for cell in receipt.builds:
        size = cell.artifact.size_bytes if cell.artifact else "-"
        flags = ",".join(f.value for f in cell.flags) or "-"
        print(f"{cell.label:<24} {cell.status.value:<8} {size!s:>10}  {flags}")
    print(f"Job {receipt.job.status}: {len(receipt.builds)} cells → {job.artifacts_dir}")

    verify_failed = any(BuildFlag.VERIFY_FAILED in c.flags for c in receipt.builds)
    return 0 if receipt.job.status == "SUCCESS" and not verify_failed else 1


def cmd_verify(args: argparse.Namespace, settings: Settings) -> int:
    artifacts_dir = Path(args.workspace or settings.WORKSPACE) / "artifacts"
    receipt = load_receipt(artifacts_dir)
    verify_receipt(receipt, artifacts_dir, args.expect, settings.RUN_TIMEOUT)
    write_receipt(receipt, artifacts_dir)

    failures = 0
    for cell in receipt.builds:
        if cell.verify is None:
            continue
        state = "OK" if cell.verify.matched else "MISMATCH"
        if not cell.verify.matched:
            failures += 1
        print(f"{cell.label:<24} {state:<8} {cell.verify.stdout.strip()!r}")
    return 0 if failures == 0 else 1


def cmd_sizes(args: argparse.Namespace, settings: Settings) -> int:
    if args.dir:
        report = compare_directory(Path(args.dir), args.baseline)
    else:
        artifacts_dir = Path(args.workspace or settings.WORKSPACE) / "artifacts"
        report = compare_receipt(load_receipt(artifacts_dir), artifacts_dir,
                                 args.baseline or "gcc/O0/debug")
    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print(render_table(report))
    return 0


def cmd_inspect(args: argparse.Namespace, settings: Settings) -> int:
    report = inspect_binary(
        Path(args.binary),
        disassembly_out=Path(args.disassemble) if args.disassemble else None,
        objdump=settings.OBJDUMP,
        timeout=settings.COMMAND_TIMEOUT,
    )
    if args.json:
        print(report.model_dump_json(indent=2))
        return 0

    print(f"{report.path}: {report.description}")
    print(f"  size: {report.size_bytes} bytes  sha256: {report.sha256[:16]}")
    if report.is_elf:
        print(f"  sections ({len(report.sections)}):")
        for s in report.sections:
            print(f"    [{s.index:>2}] {s.name:<24} {s.sh_type:<16} {s.address:>12} {s.size:>8}")
        if report.symbols.no_symbols:
            print("  symbols: (no symbols)")
        else:
            print(f"  symbols: {report.symbols.symbol_count} "
                  f"(functions: {', '.join(report.symbols.function_names[:10])})")
    if report.disassembly is not None:
        if report.disassembly.ok:
            print(f"  disassembly: {args.disassemble}")
        else:
            print(f"  disassembly failed: {report.disassembly.stderr_tail.strip()}")
            return 1
    return 0


def cmd_strip(args: argparse.Namespace, settings: Settings) -> int:
    mode = StripMode(args.mode)
    result = strip_binary(
        Path(args.binary),
        Path(args.output),
        mode,
        sections=args.section or (),
        strip_tool=settings.STRIP,
        objcopy_tool=settings.OBJCOPY,
        timeout=settings.COMMAND_TIMEOUT,
    )
    if args.json:
        print(result.model_dump_json(indent=2))
    elif result.ok:
        print(f"{result.output_path}: {result.size_before} → {result.size_after} bytes")
        if result.flags:
            print(f"  flags: {', '.join(f.value for f in result.flags)}")
    else:
        print(f"strip failed: {result.command.stderr_tail.strip()}", file=sys.stderr)
    return 0 if result.ok else 1


def cmd_batch(args: argparse.Namespace, settings: Settings) -> int:
    def _echo(entry: BatchEntry) -> None:
        print(entry.status_line())

    report = batch_strip(
        Path(args.input or settings.BINARIES_DIR),
        Path(args.output or settings.STRIPPED_DIR),
        strip_tool=settings.STRIP,
        timeout=settings.COMMAND_TIMEOUT,
        on_entry=_echo,
        write_report=args.report,
    )
    if report.failed:
        print(f"{report.failed} of {report.processed} entries failed", file=sys.stderr)
    return 0 if report.ok else 1


# ── CLI ──────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="optstrip",
        description="optstrip — optimization-matrix builder and symbol stripper",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("prepare", help="Write hello_world.c into the workspace")
    p.add_argument("-w", "--workspace", help="Workspace directory")
    p.add_argument("--source", help="Use this C file instead of the canonical program")
    p.set_defaults(func=cmd_prepare)

    p = sub.add_parser("build", help="Compile the optimization matrix")
    p.add_argument("-w", "--workspace", help="Workspace directory")
    p.add_argument("--source", help="Use this C file instead of the canonical program")
    p.add_argument("--compiler", action="append", choices=[c.value for c in Compiler],
                   help="Compiler (repeatable, default from settings)")
    p.add_argument("--opt", action="append", choices=[o.value for o in OptLevel],
                   help="Optimization level (repeatable, default all)")
    p.add_argument("--variant", action="append", choices=[v.value for v in VariantType],
                   help="Variant (repeatable, default all)")
    p.add_argument("--lto", action="store_true", help="Add -flto to every cell")
    p.add_argument("--pgo", action="store_true", help="Profile-guided build for every cell")
    p.add_argument("--expect", default=None, help="Expected program output")
    p.add_argument("--no-verify", action="store_true", help="Do not run the binaries")
    p.add_argument("--clean", action="store_true", help="Remove previous artifacts first")
    p.set_defaults(func=cmd_build)

    p = sub.add_parser("verify", help="Run every built binary and check its output")
    p.add_argument("-w", "--workspace", help="Workspace directory")
    p.add_argument("--expect", default=None, help="Expected program output")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("sizes", help="Compare binary sizes")
    p.add_argument("-w", "--workspace", help="Workspace directory (uses its receipt)")
    p.add_argument("--dir", help="Compare every file in this directory instead")
    p.add_argument("--baseline", help="Row label to compare against")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_sizes)

    p = sub.add_parser("inspect", help="Describe a binary (file / readelf / nm / objdump)")
    p.add_argument("binary")
    p.add_argument("--disassemble", metavar="OUT", help="Write objdump -d listing to OUT")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_inspect)

    p = sub.add_parser("strip", help="Strip one binary into a new file")
    p.add_argument("binary")
    p.add_argument("-o", "--output", required=True, help="Output file")
    p.add_argument("--mode", choices=[m.value for m in StripMode], default=StripMode.ALL.value)
    p.add_argument("--section", action="append",
                   help="Section to remove (repeatable, --mode sections)")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_strip)

    p = sub.add_parser("batch", help="Strip every file of a directory two ways")
    p.add_argument("-i", "--input", help="Input directory (default ./binaries)")
    p.add_argument("-o", "--output", help="Output directory (default ./stripped_binaries)")
    p.add_argument("--report", action="store_true", help="Write batch_report.json")
    p.set_defaults(func=cmd_batch)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for optstrip."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args, get_settings())
    except (FileNotFoundError, NotADirectoryError, ValueError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
