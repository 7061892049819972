"""
test_compiler — optimization matrix builds, verification and receipts.

Tests verify invariant properties:
  - Every successful cell prints "Hello, World!".
  - debug cells carry .debug_info, stripped cells have no symbols.
  - The receipt on disk matches the returned receipt.
  - A compile error fails the cell without raising.
"""
import json
import stat

import pytest

from optstrip.core.compiler import BuildMatrixJob, verify_binary, verify_receipt
from optstrip.core.source import write_source
from optstrip.io.schema import (
    BuildCell,
    BuildExtras,
    BuildFlag,
    CellStatus,
    CommandResult,
    Compiler,
    OptLevel,
    PhaseStatus,
    VariantType,
)
from optstrip.io.writer import load_receipt


@pytest.fixture
def prepared(workspace, gcc_ok):
    write_source(workspace)
    return workspace


class TestCflags:

    def test_cflags_per_variant(self, workspace):
        job = BuildMatrixJob(workspace, extras=BuildExtras(lto=True))
        assert job._cflags(OptLevel.O2, VariantType.DEBUG) == ["-std=c11", "-Wall", "-O2", "-g", "-flto"]
        assert job._cflags(OptLevel.Os, VariantType.STRIPPED) == ["-std=c11", "-Wall", "-Os", "-s", "-flto"]

    def test_defaults(self, workspace):
        job = BuildMatrixJob(workspace)
        assert len(job.optimizations) == 7
        assert job.expected_output == "Hello, World!"
        assert job.artifacts_dir == workspace / "artifacts"


class TestBuildMatrix:

    def test_small_matrix(self, prepared):
        job = BuildMatrixJob(prepared, optimizations=[OptLevel.O0, OptLevel.O2])
        receipt = job.execute()

        assert receipt.job.status == "SUCCESS"
        assert len(receipt.builds) == 6
        for cell in receipt.builds:
            assert cell.status == CellStatus.SUCCESS, cell.flags
            assert cell.verify is not None and cell.verify.matched
            assert (job.artifacts_dir / cell.artifact.path_rel).is_file()

    def test_variant_contents(self, prepared):
        receipt = BuildMatrixJob(prepared, optimizations=[OptLevel.O1]).execute()
        cells = {c.variant: c for c in receipt.builds}

        assert cells["debug"].artifact.debug_presence.has_debug_sections
        assert not cells["release"].artifact.debug_presence.has_debug_sections
        assert cells["release"].artifact.symbols.has_symtab
        assert cells["stripped"].artifact.symbols.no_symbols
        assert cells["stripped"].artifact.size_bytes < cells["debug"].artifact.size_bytes
        for cell in cells.values():
            assert BuildFlag.STRIP_EXPECTED_MISSING not in cell.flags

    def test_layout_and_receipt(self, prepared):
        job = BuildMatrixJob(prepared, optimizations=[OptLevel.Os], variants=[VariantType.RELEASE])
        receipt = job.execute()

        cell = receipt.builds[0]
        assert cell.artifact.path_rel == "gcc/Os/release/bin/hello_Os"
        on_disk = load_receipt(job.artifacts_dir)
        assert on_disk.job.job_id == receipt.job.job_id
        assert on_disk.builds[0].artifact.sha256 == cell.artifact.sha256
        assert on_disk.requested.optimizations == ["Os"]
        assert on_disk.source.canonical

    def test_single_target(self, prepared):
        job = BuildMatrixJob(prepared)
        receipt = job.execute(target_opt=OptLevel.O3, target_variant=VariantType.DEBUG)
        assert [c.label for c in receipt.builds] == ["gcc/O3/debug"]

    def test_lto(self, prepared):
        job = BuildMatrixJob(
            prepared,
            optimizations=[OptLevel.O2],
            variants=[VariantType.RELEASE],
            extras=BuildExtras(lto=True),
        )
        cell = job.execute().builds[0]
        assert "-flto" in cell.compile.command
        assert cell.status == CellStatus.SUCCESS
        assert cell.verify.matched

    def test_pgo(self, prepared):
        job = BuildMatrixJob(
            prepared,
            optimizations=[OptLevel.O2],
            variants=[VariantType.RELEASE],
            extras=BuildExtras(pgo=True),
        )
        cell = job.execute().builds[0]

        assert cell.pgo_instrument is not None and cell.pgo_instrument.ok
        assert cell.pgo_train is not None and cell.pgo_train.ok
        assert "-fprofile-use=" in cell.compile.command
        assert BuildFlag.PGO_TRAINING_FAILED not in cell.flags
        assert cell.status == CellStatus.SUCCESS
        assert cell.verify.matched

    def test_compile_error_fails_cell(self, workspace, gcc_ok, tmp_path):
        broken = tmp_path / "broken.c"
        broken.write_text("int main(void) { return undefined_symbol; }\n")
        write_source(workspace, broken)

        job = BuildMatrixJob(workspace, optimizations=[OptLevel.O0], variants=[VariantType.RELEASE])
        receipt = job.execute()

        cell = receipt.builds[0]
        assert receipt.job.status == "FAILED"
        assert cell.status == CellStatus.FAILED
        assert cell.compile.status == PhaseStatus.FAILED
        assert BuildFlag.COMPILE_FAILED in cell.flags
        assert BuildFlag.NO_ARTIFACT in cell.flags
        assert cell.compile.stderr_path_rel == "gcc/O0/release/logs/compile.stderr"
        assert cell.verify is None

    def test_unexpected_output_flags_verify(self, prepared):
        job = BuildMatrixJob(
            prepared,
            optimizations=[OptLevel.O0],
            variants=[VariantType.RELEASE],
            expected_output="Goodbye",
        )
        receipt = job.execute()

        cell = receipt.builds[0]
        assert cell.status == CellStatus.SUCCESS
        assert BuildFlag.VERIFY_FAILED in cell.flags
        assert cell.verify.stdout == "Hello, World!\n"

    def test_unprepared_workspace(self, workspace):
        with pytest.raises(FileNotFoundError):
            BuildMatrixJob(workspace).execute()

    def test_clean(self, prepared):
        job = BuildMatrixJob(prepared, optimizations=[OptLevel.O0], variants=[VariantType.RELEASE])
        job.execute()
        job.clean()
        assert not job.artifacts_dir.exists()


class TestVerify:

    def test_verify_binary(self, release_binary):
        result = verify_binary(release_binary, "Hello, World!")
        assert result.matched
        assert result.exit_code == 0

    def test_verify_receipt_rechecks(self, prepared):
        job = BuildMatrixJob(prepared, optimizations=[OptLevel.O0], variants=[VariantType.RELEASE])
        receipt = job.execute()

        verify_receipt(receipt, job.artifacts_dir, expected="nope")
        assert BuildFlag.VERIFY_FAILED in receipt.builds[0].flags

        verify_receipt(receipt, job.artifacts_dir)
        assert BuildFlag.VERIFY_FAILED not in receipt.builds[0].flags
        assert receipt.builds[0].verify.matched

    def test_receipt_json_is_sorted(self, prepared):
        job = BuildMatrixJob(prepared, optimizations=[OptLevel.O0], variants=[VariantType.DEBUG])
        job.execute()
        data = json.loads((job.artifacts_dir / "build_receipt.json").read_text())
        assert list(data) == sorted(data)


def _script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


class TestClangPgo:

    @pytest.fixture
    def fake_clang(self, workspace, monkeypatch):
        """A job whose compiles write a shell script in place of a binary."""
        job = BuildMatrixJob(
            workspace,
            compilers=[Compiler.CLANG],
            optimizations=[OptLevel.O2],
            variants=[VariantType.RELEASE],
            extras=BuildExtras(pgo=True),
        )
        calls = []

        def fake_compile(compiler, cflags, output, cell_dir, log_stem):
            calls.append((log_stem, list(cflags)))
            _script(output, job.training_body)
            return CommandResult(command=" ".join(cflags), exit_code=0, status=PhaseStatus.SUCCESS)

        job.training_body = "exit 0\n"
        job.calls = calls
        monkeypatch.setattr(job, "_compile", fake_compile)
        return job

    def _run_pgo(self, job):
        cell = BuildCell(compiler="clang", optimization="O2", variant="release", extras=job.extras)
        cell_dir = job._cell_dir(Compiler.CLANG, OptLevel.O2, VariantType.RELEASE)
        output = cell_dir / "bin" / "hello_O2"
        cell.compile = job._build_pgo(cell, Compiler.CLANG, ["-O2"], output, cell_dir)
        return cell

    def test_no_raw_profile_skips_merge(self, fake_clang):
        cell = self._run_pgo(fake_clang)

        assert cell.pgo_train.ok
        assert cell.pgo_merge is None
        assert BuildFlag.PGO_TRAINING_FAILED in cell.flags
        stem, cflags = fake_clang.calls[-1]
        assert stem == "compile"
        assert not any(f.startswith("-fprofile-use") for f in cflags)
        assert cell.compile.ok

    def test_merge_failure_flags_cell(self, fake_clang, tmp_path):
        fake_clang.training_body = "touch pgo/default_1.profraw\n"
        fake_clang.llvm_profdata = str(
            _script(tmp_path / "llvm-profdata", "echo 'malformed profile' >&2\nexit 1\n")
        )

        cell = self._run_pgo(fake_clang)

        assert cell.pgo_merge is not None
        assert not cell.pgo_merge.ok
        assert "default_1.profraw" in cell.pgo_merge.command
        assert "malformed profile" in cell.pgo_merge.stderr_tail
        assert BuildFlag.PGO_TRAINING_FAILED in cell.flags
        assert not any(f.startswith("-fprofile-use") for f in fake_clang.calls[-1][1])

    def test_merge_success_uses_profdata(self, fake_clang, tmp_path):
        fake_clang.training_body = "touch pgo/default_1.profraw\n"
        fake_clang.llvm_profdata = str(_script(tmp_path / "llvm-profdata", "exit 0\n"))

        cell = self._run_pgo(fake_clang)

        assert cell.pgo_merge.ok
        assert BuildFlag.PGO_TRAINING_FAILED not in cell.flags
        profile_use = [f for f in fake_clang.calls[-1][1] if f.startswith("-fprofile-use=")]
        assert len(profile_use) == 1
        assert profile_use[0].endswith("pgo/default.profdata")

    def test_clang_pgo_build(self, workspace, clang_pgo_ok):
        write_source(workspace)
        job = BuildMatrixJob(
            workspace,
            compilers=[Compiler.CLANG],
            optimizations=[OptLevel.O2],
            variants=[VariantType.RELEASE],
            extras=BuildExtras(pgo=True),
        )
        cell = job.execute().builds[0]

        assert cell.label == "clang/O2/release"
        assert cell.pgo_instrument.ok
        assert cell.pgo_train.ok
        assert cell.pgo_merge is not None and cell.pgo_merge.ok
        assert "-fprofile-use=" in cell.compile.command
        assert BuildFlag.PGO_TRAINING_FAILED not in cell.flags
        assert cell.status == CellStatus.SUCCESS
        assert cell.verify.matched

    def test_clang_matrix(self, workspace, clang_ok):
        write_source(workspace)
        receipt = BuildMatrixJob(
            workspace, compilers=[Compiler.CLANG], optimizations=[OptLevel.O1],
        ).execute()

        assert [c.label for c in receipt.builds] == [
            "clang/O1/debug", "clang/O1/release", "clang/O1/stripped",
        ]
        for cell in receipt.builds:
            assert cell.status == CellStatus.SUCCESS, cell.flags
            assert cell.verify.matched
