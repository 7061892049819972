"""
Shared pytest fixtures for optstrip tests.

Provides on-the-fly compilation of the Hello, World! program with gcc,
producing ELF binaries for the inspect / strip / batch tests.

Requirements:
  - gcc and binutils (strip, objcopy, objdump) must be available
  - gcc must produce ELF binaries (Linux/WSL), not PE executables

Toolchain-dependent tests are skipped when these are missing; the pure
policy / schema tests run everywhere.
"""
import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

from optstrip.core.source import HELLO_WORLD_C


def _tool_available(name: str) -> bool:
    return shutil.which(name) is not None


def _gcc_produces_elf() -> bool:
    """Test if gcc produces ELF binaries (Linux/WSL) vs PE executables (Windows)."""
    if not _tool_available("gcc"):
        return False

    with tempfile.TemporaryDirectory() as tmpdir:
        test_c = Path(tmpdir) / "test.c"
        test_out = Path(tmpdir) / "test_out"
        test_c.write_text("int main(void) { return 0; }")
        try:
            subprocess.run(
                ["gcc", str(test_c), "-o", str(test_out)],
                check=True,
                capture_output=True,
                timeout=30,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        if not test_out.exists():
            return False
        # ELF = 0x7F 'E' 'L' 'F', PE = 'M' 'Z'
        return test_out.read_bytes()[:4] == b"\x7fELF"


def _compile(source: str, output: Path, opt: str = "O0", debug: bool = True) -> Path:
    """Compile C source to an ELF binary with gcc."""
    src_file = output.with_suffix(".c")
    src_file.write_text(source)
    cmd = ["gcc", f"-{opt}"]
    if debug:
        cmd.append("-g")
    cmd += [str(src_file), "-o", str(output)]
    subprocess.run(cmd, check=True, capture_output=True, timeout=60)
    return output


@pytest.fixture(scope="session")
def gcc_ok():
    """Skip tests if gcc is not available or doesn't produce ELF binaries."""
    if not _gcc_produces_elf():
        pytest.skip("gcc not available or does not produce ELF binaries")


@pytest.fixture(scope="session")
def binutils_ok(gcc_ok):
    """Skip tests if strip / objcopy are missing."""
    for tool in ("strip", "objcopy"):
        if not _tool_available(tool):
            pytest.skip(f"{tool} not available - install binutils to run these tests")


@pytest.fixture(scope="session")
def objdump_ok(gcc_ok):
    if not _tool_available("objdump"):
        pytest.skip("objdump not available")


@pytest.fixture(scope="session")
def fixtures_dir(tmp_path_factory, gcc_ok) -> Path:
    """Session-scoped temp directory with compiled test binaries."""
    return tmp_path_factory.mktemp("optstrip_fixtures")


@pytest.fixture(scope="session")
def debug_binary(fixtures_dir) -> Path:
    """Hello, World! at -O0 with debug info."""
    return _compile(HELLO_WORLD_C, fixtures_dir / "hello_debug", opt="O0", debug=True)


@pytest.fixture(scope="session")
def release_binary(fixtures_dir) -> Path:
    """Hello, World! at -O2 without debug info (symbols kept)."""
    return _compile(HELLO_WORLD_C, fixtures_dir / "hello_release", opt="O2", debug=False)


@pytest.fixture
def binaries_dir(tmp_path, debug_binary, release_binary) -> Path:
    """A fresh ./binaries-style directory holding two ELF executables."""
    d = tmp_path / "binaries"
    d.mkdir()
    shutil.copy2(debug_binary, d / "hello_debug")
    shutil.copy2(release_binary, d / "hello_release")
    return d


@pytest.fixture
def not_elf(tmp_path) -> Path:
    """A file that is not an ELF binary."""
    p = tmp_path / "not_an_elf"
    p.write_bytes(b"This is not an ELF file.\x00\x00\x00")
    return p


@pytest.fixture
def workspace(tmp_path) -> Path:
    return tmp_path / "work"


def _clang_produces_elf() -> bool:
    if not _tool_available("clang"):
        return False

    with tempfile.TemporaryDirectory() as tmpdir:
        test_c = Path(tmpdir) / "test.c"
        test_out = Path(tmpdir) / "test_out"
        test_c.write_text("int main(void) { return 0; }")
        try:
            subprocess.run(
                ["clang", str(test_c), "-o", str(test_out)],
                check=True,
                capture_output=True,
                timeout=30,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return test_out.exists() and test_out.read_bytes()[:4] == b"\x7fELF"


@pytest.fixture(scope="session")
def clang_ok():
    """Skip tests if clang is not available or doesn't produce ELF binaries."""
    if not _clang_produces_elf():
        pytest.skip("clang not available or does not produce ELF binaries")


@pytest.fixture(scope="session")
def clang_pgo_ok(clang_ok):
    """Skip tests if llvm-profdata is missing."""
    if not _tool_available("llvm-profdata"):
        pytest.skip("llvm-profdata not available - install llvm to run clang PGO tests")
