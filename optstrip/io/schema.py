"""
Schema — Pydantic models for every optstrip JSON output.

Outputs:
  1. build_receipt.json  — one per build job, full provenance for all cells.
  2. batch_report.json   — one per batch-strip run (optional).
  3. Inspect / strip / size results (CLI --json or library return values).

Runtime contract fields on top-level outputs:
  tool_name, tool_version, schema_version.
"""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from optstrip import PROFILE_ID, SCHEMA_VERSION, TOOL_NAME, TOOL_VERSION


# =============================================================================
# Enums
# =============================================================================

class OptLevel(str, Enum):
    """Optimization levels (exact strings, no prefix dash)."""
    O0 = "O0"
    O1 = "O1"
    O2 = "O2"
    O3 = "O3"
    Os = "Os"
    Ofast = "Ofast"
    Og = "Og"

    def to_flag(self) -> str:
        """Convert to compiler flag"""
        return f"-{self.value}"


class Compiler(str, Enum):
    """Supported compilers"""
    GCC = "gcc"
    CLANG = "clang"


class VariantType(str, Enum):
    """Binary variant within a build cell."""
    DEBUG = "debug"
    RELEASE = "release"
    STRIPPED = "stripped"


class CellStatus(str, Enum):
    """Status of a single build cell."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


class PhaseStatus(str, Enum):
    """Status of a single external command."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    SKIPPED = "SKIPPED"


class BuildFlag(str, Enum):
    """Flags raised per build cell or strip result."""
    BUILD_FAILED = "BUILD_FAILED"
    TIMEOUT = "TIMEOUT"
    NO_ARTIFACT = "NO_ARTIFACT"
    COMPILE_FAILED = "COMPILE_FAILED"
    PGO_TRAINING_FAILED = "PGO_TRAINING_FAILED"
    NON_ELF_OUTPUT = "NON_ELF_OUTPUT"
    DEBUG_EXPECTED_MISSING = "DEBUG_EXPECTED_MISSING"
    SYMBOLS_EXPECTED_MISSING = "SYMBOLS_EXPECTED_MISSING"
    STRIP_EXPECTED_MISSING = "STRIP_EXPECTED_MISSING"
    STRIP_FAILED = "STRIP_FAILED"
    VERIFY_FAILED = "VERIFY_FAILED"


class StripMode(str, Enum):
    """What a strip operation removes."""
    DEBUG = "debug"  # strip --strip-debug
    ALL = "all"  # strip --strip-all
    SECTIONS = "sections"  # objcopy --remove-section=...


# =============================================================================
# Command results
# =============================================================================

class CommandResult(BaseModel):
    """One invocation of an external tool."""
    command: str = ""
    exit_code: int = -1
    stdout_path_rel: Optional[str] = None
    stderr_path_rel: Optional[str] = None
    stderr_tail: str = ""
    duration_ms: int = 0
    status: PhaseStatus = PhaseStatus.SKIPPED

    @property
    def ok(self) -> bool:
        return self.status == PhaseStatus.SUCCESS


# =============================================================================
# Source & toolchain identity
# =============================================================================

class SourceFile(BaseModel):
    """A single source file in the workspace."""
    path_rel: str
    sha256: str
    size_bytes: int


class SourceIdentity(BaseModel):
    """Identity of the source input for a build job."""
    entry: SourceFile
    canonical: bool = True  # False when a user-supplied .c replaced hello_world.c
    language: str = "c"


class ToolchainIdentity(BaseModel):
    """Immutable record of the build environment."""
    compiler: str
    compiler_version: str
    binutils_version: str  # ld --version first line
    strip_version: str  # strip --version first line
    os_release: str  # /etc/os-release PRETTY_NAME
    kernel: str  # uname -r
    arch: str  # uname -m


# =============================================================================
# ELF metadata
# =============================================================================

class ElfMeta(BaseModel):
    """Minimal ELF header metadata."""
    elf_type: str = ""  # ET_EXEC, ET_DYN, etc.
    arch: str = ""  # EM_X86_64, etc.
    elf_class: int = 0  # 32 or 64
    endianness: str = ""
    build_id: Optional[str] = None


class SectionEntry(BaseModel):
    """One row of a section table (readelf -S)."""
    index: int
    name: str
    sh_type: str
    address: str  # hex
    size: int


class SymbolSummary(BaseModel):
    """Symbol-table summary (nm)."""
    has_symtab: bool = False
    symbol_count: int = 0
    function_names: List[str] = Field(default_factory=list)

    @property
    def no_symbols(self) -> bool:
        """True where nm would print '(no symbols)'."""
        return not self.has_symtab or self.symbol_count == 0


class DebugPresence(BaseModel):
    """Debug section presence check."""
    has_debug_sections: bool = False
    debug_sections: List[str] = Field(default_factory=list)


class ArtifactMeta(BaseModel):
    """Metadata for a produced binary artifact."""
    path_rel: str
    sha256: str
    size_bytes: int
    elf: ElfMeta = ElfMeta()
    debug_presence: DebugPresence = DebugPresence()
    symbols: SymbolSummary = SymbolSummary()


class VerifyResult(BaseModel):
    """Outcome of executing an artifact and checking its output."""
    exit_code: int = -1
    stdout: str = ""
    expected: str
    matched: bool = False
    duration_ms: int = 0


# =============================================================================
# Build cell & receipt
# =============================================================================

class BuildExtras(BaseModel):
    """Cross-cutting optimizations applied to every cell."""
    lto: bool = False
    pgo: bool = False


class BuildCell(BaseModel):
    """
    Result of building one (compiler, optimization, variant) combination.
    PGO cells carry the instrument and training phases as well.
    """
    compiler: str
    optimization: str
    variant: str
    extras: BuildExtras = BuildExtras()
    status: CellStatus = CellStatus.FAILED
    flags: List[BuildFlag] = Field(default_factory=list)

    # Phases
    compile: CommandResult = CommandResult()
    pgo_instrument: Optional[CommandResult] = None
    pgo_train: Optional[CommandResult] = None
    pgo_merge: Optional[CommandResult] = None

    artifact: Optional[ArtifactMeta] = None
    verify: Optional[VerifyResult] = None

    @property
    def label(self) -> str:
        return f"{self.compiler}/{self.optimization}/{self.variant}"


class ToolInfo(BaseModel):
    """Identifies the tool that produced an output."""
    tool_name: str = TOOL_NAME
    tool_version: str = TOOL_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str = PROFILE_ID


class JobInfo(BaseModel):
    """Job-level metadata."""
    job_id: str
    created_at: str  # ISO 8601
    finished_at: Optional[str] = None
    status: str = "BUILDING"  # BUILDING, SUCCESS, PARTIAL, FAILED


class RequestedMatrix(BaseModel):
    """What was requested to be built."""
    compilers: List[str]
    optimizations: List[str]
    variants: List[str]
    extras: BuildExtras = BuildExtras()
    base_cflags: List[str] = Field(default_factory=list)
    expected_output: str = ""


class BuildReceipt(BaseModel):
    """
    Single authoritative receipt for a build job.

    One file per job: build_receipt.json
    """
    tool: ToolInfo = ToolInfo()
    job: JobInfo
    source: SourceIdentity
    toolchain: List[ToolchainIdentity] = Field(default_factory=list)
    requested: RequestedMatrix
    builds: List[BuildCell] = Field(default_factory=list)

    def compute_status(self) -> str:
        """Derive job status from cell results."""
        if not self.builds:
            return "FAILED"
        statuses = [c.status for c in self.builds]
        if all(s == CellStatus.SUCCESS for s in statuses):
            return "SUCCESS"
        if any(s == CellStatus.SUCCESS for s in statuses):
            return "PARTIAL"
        return "FAILED"


# =============================================================================
# Stripping
# =============================================================================

class StripResult(BaseModel):
    """Result of stripping a single binary into a new file."""
    input_path: str
    output_path: str
    mode: StripMode
    removed_sections: List[str] = Field(default_factory=list)
    command: CommandResult = CommandResult()
    size_before: int = 0
    size_after: Optional[int] = None
    debug_after: Optional[DebugPresence] = None
    symbols_after: Optional[SymbolSummary] = None
    flags: List[BuildFlag] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.command.ok and self.size_after is not None


class BatchEntry(BaseModel):
    """Both strip results for one entry of the input directory."""
    name: str
    debug: StripResult
    all: StripResult

    @property
    def ok(self) -> bool:
        return self.debug.ok and self.all.ok

    def status_line(self) -> str:
        """Human-readable one-line status for this entry."""
        if self.ok:
            return (
                f"Stripped {self.name} -> "
                f"{Path(self.debug.output_path).name}, "
                f"{Path(self.all.output_path).name}"
            )
        failed = [r.mode.value for r in (self.debug, self.all) if not r.ok]
        return f"Failed to strip {self.name} ({', '.join(failed)})"


class BatchStripReport(BaseModel):
    """Outcome of a batch-strip run over one directory."""
    tool: ToolInfo = ToolInfo()
    input_dir: str
    output_dir: str
    debug_suffix: str
    all_suffix: str
    started_at: str
    finished_at: Optional[str] = None
    entries: List[BatchEntry] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.entries)

    @property
    def failed(self) -> int:
        return sum(1 for e in self.entries if not e.ok)

    @property
    def ok(self) -> bool:
        return self.failed == 0


# =============================================================================
# Size comparison & inspection
# =============================================================================

class SizeRow(BaseModel):
    """One binary in a size comparison."""
    label: str
    path: str
    size_bytes: int
    delta_bytes: int = 0  # vs baseline
    ratio: float = 1.0  # size / baseline size


class SizeReport(BaseModel):
    baseline_label: Optional[str] = None
    rows: List[SizeRow] = Field(default_factory=list)


class InspectReport(BaseModel):
    """Everything the tutorial inspects with file / readelf / nm / objdump."""
    path: str
    sha256: str
    size_bytes: int
    description: str
    is_elf: bool
    elf: Optional[ElfMeta] = None
    sections: List[SectionEntry] = Field(default_factory=list)
    debug_presence: DebugPresence = DebugPresence()
    symbols: SymbolSummary = SymbolSummary()
    disassembly: Optional[CommandResult] = None


# =============================================================================
# Helpers
# =============================================================================

def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
