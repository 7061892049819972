"""
Optimization Matrix Builder

Compile the workspace program across the full matrix
  (compiler) × (optimization level) × (variant) = build cells,
optionally with LTO and/or profile-guided optimization, then verify
every artifact by running it.

Produces:
  - ELF binaries on disk in a stable layout
  - Per-command logs (compile / pgo / stdout+stderr)
  - A single BuildReceipt JSON for provenance
"""
from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import List, Optional, Sequence

from optstrip.core import source as src
from optstrip.core.elf_inspect import check_debug_sections, summarize_symbols, validate_elf
from optstrip.core.process import run_capture, run_tool
from optstrip.core.toolchain import capture_toolchain
from optstrip.io.schema import (
    ArtifactMeta,
    BuildCell,
    BuildExtras,
    BuildFlag,
    BuildReceipt,
    CellStatus,
    CommandResult,
    Compiler,
    JobInfo,
    OptLevel,
    PhaseStatus,
    RequestedMatrix,
    VariantType,
    VerifyResult,
    hash_file,
    now_iso,
)
from optstrip.io.writer import write_receipt
from optstrip.policy.profile import BuildProfile
from optstrip.policy.verdict import check_artifact, judge_cell

logger = logging.getLogger(__name__)


def verify_binary(
    binary: Path,
    expected: str,
    timeout: int = 10,
    cwd: Optional[Path] = None,
) -> VerifyResult:
    """Execute *binary* and compare its stdout with *expected*."""
    result, stdout = run_capture([str(binary.resolve())], timeout=timeout, cwd=cwd)
    return VerifyResult(
        exit_code=result.exit_code,
        stdout=stdout,
        expected=expected,
        matched=result.ok and stdout.strip() == expected.strip(),
        duration_ms=result.duration_ms,
    )


class BuildMatrixJob:
    """
    Builds the workspace source across the optimization matrix.

    Each cell is one compile command (or three for PGO: instrument,
    train, rebuild).  Emits a single BuildReceipt JSON at job level.
    """

    def __init__(
        self,
        workspace_dir: Path,
        compilers: Optional[Sequence[Compiler]] = None,
        optimizations: Optional[Sequence[OptLevel]] = None,
        variants: Optional[Sequence[VariantType]] = None,
        extras: Optional[BuildExtras] = None,
        profile: Optional[BuildProfile] = None,
        expected_output: Optional[str] = None,
        verify: bool = True,
        strip_tool: str = "strip",
        llvm_profdata: str = "llvm-profdata",
        timeout: int = 120,
        run_timeout: int = 10,
    ):
        """
        Args:
            workspace_dir: Workspace root (must contain src/hello_world.c).
            compilers: Compilers to build with (default gcc).
            optimizations: Optimization levels (default: all in profile).
            variants: Variants to build (default: all in profile).
            extras: LTO / PGO switches applied to every cell.
            profile: Build policy (default BuildProfile.v1()).
            expected_output: Expected stdout (default from profile).
            verify: Run every artifact after building it.
            strip_tool: strip executable, recorded in toolchain identity.
            llvm_profdata: llvm-profdata executable (clang PGO only).
            timeout: Per-command timeout in seconds.
            run_timeout: Timeout for executing built binaries.
        """
        self.profile = profile or BuildProfile.v1()
        # gcc runs inside each cell directory, so every path it sees is absolute
        self.workspace_dir = Path(workspace_dir).absolute()
        self.artifacts_dir = self.workspace_dir / "artifacts"
        self.compilers = list(compilers or [Compiler.GCC])
        self.optimizations = list(optimizations or self.profile.optimizations)
        self.variants = list(variants or self.profile.variants)
        self.extras = extras or BuildExtras()
        self.expected_output = (
            expected_output if expected_output is not None else self.profile.expected_output
        )
        self.verify = verify
        self.strip_tool = strip_tool
        self.llvm_profdata = llvm_profdata
        self.timeout = timeout
        self.run_timeout = run_timeout

        self.cells: List[BuildCell] = []
        self.receipt: Optional[BuildReceipt] = None

    # -----------------------------------------------------------------
    # Layout
    # -----------------------------------------------------------------

    def _cell_dir(self, compiler: Compiler, opt: OptLevel, variant: VariantType) -> Path:
        """Return and create the artifact directory for a cell."""
        d = self.artifacts_dir / compiler.value / opt.value / variant.value
        (d / "bin").mkdir(parents=True, exist_ok=True)
        (d / "logs").mkdir(exist_ok=True)
        return d

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.artifacts_dir).as_posix()

    # -----------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------

    def _cflags(self, opt: OptLevel, variant: VariantType) -> List[str]:
        flags = list(self.profile.base_cflags) + [opt.to_flag()]
        flags += list(self.profile.delta(variant).add_cflags)
        if self.extras.lto:
            flags += list(self.profile.lto_cflags)
        return flags

    def _compile(
        self,
        compiler: Compiler,
        cflags: List[str],
        output: Path,
        cell_dir: Path,
        log_stem: str,
    ) -> CommandResult:
        cmd = [compiler.value] + cflags + [
            str(src.source_path(self.workspace_dir)),
            "-o", str(output),
        ]
        return run_tool(
            cmd,
            timeout=self.timeout,
            cwd=cell_dir,
            logs_dir=cell_dir / "logs",
            log_stem=log_stem,
            rel_root=self.artifacts_dir,
        )

    def _build_pgo(
        self,
        cell: BuildCell,
        compiler: Compiler,
        cflags: List[str],
        output: Path,
        cell_dir: Path,
    ) -> CommandResult:
        """
        Instrument → train → rebuild.  The instrumented binary is built at
        the final output path so gcc finds its .gcda files on rebuild.
        """
        profile_dir = cell_dir / "pgo"
        if profile_dir.exists():
            shutil.rmtree(profile_dir)
        profile_dir.mkdir()

        gen_flag = f"{self.profile.pgo_generate_flag}={profile_dir}"
        cell.pgo_instrument = self._compile(
            compiler, cflags + [gen_flag], output, cell_dir, "pgo_instrument",
        )
        if not cell.pgo_instrument.ok:
            return cell.pgo_instrument

        cell.pgo_train = run_tool(
            [str(output.resolve())],
            timeout=self.run_timeout,
            cwd=cell_dir,
            logs_dir=cell_dir / "logs",
            log_stem="pgo_train",
            rel_root=self.artifacts_dir,
        )
        if not cell.pgo_train.ok:
            logger.warning(f"PGO training run failed for {cell.label}, rebuilding without profile")
            cell.flags.append(BuildFlag.PGO_TRAINING_FAILED)

        if compiler == Compiler.CLANG:
            profdata = profile_dir / "default.profdata"
            raw_profiles = sorted(str(p) for p in profile_dir.glob("*.profraw"))
            if raw_profiles:
                cell.pgo_merge = run_tool(
                    [self.llvm_profdata, "merge", f"-output={profdata}"] + raw_profiles,
                    timeout=self.timeout,
                    cwd=cell_dir,
                    logs_dir=cell_dir / "logs",
                    log_stem="pgo_merge",
                    rel_root=self.artifacts_dir,
                )
            else:
                logger.warning(f"No .profraw written for {cell.label}, skipping profile merge")
            merged = cell.pgo_merge is not None and cell.pgo_merge.ok
            if not merged and BuildFlag.PGO_TRAINING_FAILED not in cell.flags:
                cell.flags.append(BuildFlag.PGO_TRAINING_FAILED)
            use_flags = [f"-fprofile-use={profdata}"] if merged else []
        else:
            use_flags = [f"-fprofile-use={profile_dir}"] + list(self.profile.pgo_use_flags)

        return self._compile(compiler, cflags + use_flags, output, cell_dir, "compile")

    # -----------------------------------------------------------------
    # Build a single cell
    # -----------------------------------------------------------------

    def _build_cell(
        self,
        compiler: Compiler,
        opt: OptLevel,
        variant: VariantType,
    ) -> BuildCell:
        """Build one (compiler, optimization, variant) cell."""
        cell_dir = self._cell_dir(compiler, opt, variant)
        output = cell_dir / "bin" / self.profile.binary_name(opt)
        if output.exists():
            output.unlink()

        cell = BuildCell(
            compiler=compiler.value,
            optimization=opt.value,
            variant=variant.value,
            extras=self.extras,
        )
        logger.info(f"Building cell {cell.label}")

        cflags = self._cflags(opt, variant)
        if self.extras.pgo:
            cell.compile = self._build_pgo(cell, compiler, cflags, output, cell_dir)
        else:
            cell.compile = self._compile(compiler, cflags, output, cell_dir, "compile")

        if not cell.compile.ok:
            cell.flags.append(BuildFlag.COMPILE_FAILED)
            if cell.compile.status == PhaseStatus.TIMEOUT:
                cell.flags.append(BuildFlag.TIMEOUT)

        if output.exists():
            is_valid, elf_meta = validate_elf(output)
            if not is_valid:
                cell.flags.append(BuildFlag.NON_ELF_OUTPUT)
            else:
                debug = check_debug_sections(output)
                symbols = summarize_symbols(output)
                cell.flags.extend(
                    check_artifact(self.profile.delta(variant), debug, symbols)
                )
                cell.artifact = ArtifactMeta(
                    path_rel=self._rel(output),
                    sha256=hash_file(output),
                    size_bytes=output.stat().st_size,
                    elf=elf_meta,
                    debug_presence=debug,
                    symbols=symbols,
                )
        else:
            cell.flags.append(BuildFlag.NO_ARTIFACT)

        cell.status = judge_cell(cell.compile.status, cell.flags)

        if self.verify and cell.status == CellStatus.SUCCESS:
            cell.verify = verify_binary(output, self.expected_output, self.run_timeout, cwd=cell_dir)
            if not cell.verify.matched:
                cell.flags.append(BuildFlag.VERIFY_FAILED)
                logger.warning(
                    f"Verification failed for {cell.label}: "
                    f"exit={cell.verify.exit_code} stdout={cell.verify.stdout!r}"
                )

        return cell

    # -----------------------------------------------------------------
    # Execute full job
    # -----------------------------------------------------------------

    def execute(
        self,
        target_opt: Optional[OptLevel] = None,
        target_variant: Optional[VariantType] = None,
    ) -> BuildReceipt:
        """
        Execute the full build matrix or a single-target rebuild.

        Args:
            target_opt: If set, build only this optimization level.
            target_variant: If set, build only this variant.

        Returns:
            The completed BuildReceipt.
        """
        job_id = str(uuid.uuid4())
        created_at = now_iso()
        logger.info(f"Starting build job {job_id} in {self.workspace_dir}")

        # 1. Source identity (prepared by write_source)
        source_identity = src.read_identity(self.workspace_dir)
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)

        # 2. Toolchain identity per compiler
        toolchains = [capture_toolchain(c.value, self.strip_tool) for c in self.compilers]

        # 3. Determine build matrix
        opts_to_build = [target_opt] if target_opt else self.optimizations
        variants_to_build = [target_variant] if target_variant else self.variants

        # 4. Build each cell
        cells: List[BuildCell] = []
        for compiler in self.compilers:
            for opt in opts_to_build:
                for variant in variants_to_build:
                    cells.append(self._build_cell(compiler, opt, variant))
        self.cells = cells

        # 5. Assemble receipt
        receipt = BuildReceipt(
            job=JobInfo(
                job_id=job_id,
                created_at=created_at,
                finished_at=now_iso(),
            ),
            source=source_identity,
            toolchain=toolchains,
            requested=RequestedMatrix(
                compilers=[c.value for c in self.compilers],
                optimizations=[o.value for o in opts_to_build],
                variants=[v.value for v in variants_to_build],
                extras=self.extras,
                base_cflags=list(self.profile.base_cflags),
                expected_output=self.expected_output,
            ),
            builds=cells,
        )
        receipt.job.status = receipt.compute_status()
        self.receipt = receipt

        # 6. Save receipt (single authoritative location)
        path = write_receipt(receipt, self.artifacts_dir)
        logger.info(f"Receipt saved: {path}")
        logger.info(
            f"Build job {job_id} finished: {receipt.job.status} ({len(cells)} cells)"
        )
        return receipt

    def clean(self):
        """Remove all previous artifacts (not the source)."""
        if self.artifacts_dir.exists():
            shutil.rmtree(self.artifacts_dir)
            logger.info(f"Cleaned up artifacts: {self.artifacts_dir}")


def verify_receipt(
    receipt: BuildReceipt,
    artifacts_dir: Path,
    expected: Optional[str] = None,
    timeout: int = 10,
) -> BuildReceipt:
    """
    Re-run verification for every cell with an artifact, updating the
    cells' verify results and VERIFY_FAILED flags in place.
    """
    expected = expected if expected is not None else receipt.requested.expected_output
    for cell in receipt.builds:
        if cell.artifact is None:
            continue
        binary = artifacts_dir / cell.artifact.path_rel
        if BuildFlag.VERIFY_FAILED in cell.flags:
            cell.flags.remove(BuildFlag.VERIFY_FAILED)
        if not binary.is_file():
            cell.verify = VerifyResult(expected=expected, stdout="", exit_code=-1)
        else:
            cell.verify = verify_binary(binary, expected, timeout, cwd=binary.parent.parent)
        if not cell.verify.matched:
            cell.flags.append(BuildFlag.VERIFY_FAILED)
        logger.info(f"{cell.label}: {'OK' if cell.verify.matched else 'MISMATCH'}")
    return receipt
