"""
ELF inspection — what the tutorial does with file, readelf -S, nm and objdump.

Responsibilities:
  - Validate that a file is an ELF binary and read header metadata.
  - List sections (readelf -S) and detect .debug_* presence.
  - Summarize the static symbol table (nm), including "(no symbols)".
  - Produce a one-line file-type description (file).
  - Disassemble via objdump -d (the only part that shells out).

Section and symbol reading uses pyelftools; no DWARF parsing.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection

from optstrip.core.process import run_capture
from optstrip.io.schema import (
    CommandResult,
    DebugPresence,
    ElfMeta,
    InspectReport,
    SectionEntry,
    SymbolSummary,
    hash_file,
)

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"

# file(1)-style machine names
_MACHINE_NAMES = {
    "EM_X86_64": "x86-64",
    "EM_386": "Intel 80386",
    "EM_AARCH64": "ARM aarch64",
    "EM_ARM": "ARM",
    "EM_RISCV": "UCB RISC-V",
    "EM_PPC64": "64-bit PowerPC",
    "EM_MIPS": "MIPS",
    "EM_LOONGARCH": "LoongArch",
}

_TYPE_NAMES = {
    "ET_EXEC": "executable",
    "ET_DYN": "shared object",
    "ET_REL": "relocatable",
    "ET_CORE": "core file",
}

# Cap on function names kept in a SymbolSummary
MAX_FUNCTION_NAMES = 64


def is_elf(path: Path) -> bool:
    """Cheap magic-bytes check."""
    try:
        with open(path, "rb") as f:
            return f.read(4) == ELF_MAGIC
    except OSError:
        return False


def _read_build_id(elf: ELFFile) -> Optional[str]:
    section = elf.get_section_by_name(".note.gnu.build-id")
    if section is None:
        return None
    for note in section.iter_notes():
        if note["n_type"] == "NT_GNU_BUILD_ID":
            return note["n_desc"]
    return None


def _meta(elf: ELFFile) -> ElfMeta:
    return ElfMeta(
        elf_type=elf.header["e_type"],
        arch=elf.header["e_machine"],
        elf_class=elf.elfclass,
        endianness="little" if elf.little_endian else "big",
        build_id=_read_build_id(elf),
    )


def validate_elf(path: Path) -> Tuple[bool, ElfMeta]:
    """
    Validate that a file is a valid ELF binary and extract metadata.
    Returns (is_valid, meta).
    """
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            return True, _meta(elf)
    except (ELFError, OSError) as e:
        logger.warning(f"ELF validation failed for {path}: {e}")
        return False, ElfMeta()


def list_sections(path: Path) -> List[SectionEntry]:
    """Section headers, in file order (readelf -S)."""
    with open(path, "rb") as f:
        elf = ELFFile(f)
        return [
            SectionEntry(
                index=i,
                name=s.name,
                sh_type=str(s["sh_type"]),
                address=hex(s["sh_addr"]),
                size=s["sh_size"],
            )
            for i, s in enumerate(elf.iter_sections())
        ]


def debug_presence(sections: List[SectionEntry]) -> DebugPresence:
    names = [s.name for s in sections if s.name.startswith(".debug_")]
    return DebugPresence(has_debug_sections=bool(names), debug_sections=names)


def check_debug_sections(path: Path) -> DebugPresence:
    """
    Check for .debug_* section presence.
    Presence check only — no DWARF semantic parsing.
    """
    try:
        return debug_presence(list_sections(path))
    except (ELFError, OSError) as e:
        logger.warning(f"Debug section check failed for {path}: {e}")
        return DebugPresence()


def summarize_symbols(path: Path) -> SymbolSummary:
    """
    Summarize the static symbol table, the way nm sees it.

    Only .symtab counts: nm without -D ignores .dynsym, so a stripped
    dynamic executable is "(no symbols)" even though it still imports
    printf.
    """
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            symtab = elf.get_section_by_name(".symtab")
            if not isinstance(symtab, SymbolTableSection):
                return SymbolSummary()

            count = 0
            functions: List[str] = []
            for sym in symtab.iter_symbols():
                if not sym.name:
                    continue
                count += 1
                if sym["st_info"]["type"] == "STT_FUNC" and len(functions) < MAX_FUNCTION_NAMES:
                    functions.append(sym.name)
            return SymbolSummary(
                has_symtab=True,
                symbol_count=count,
                function_names=sorted(functions),
            )
    except (ELFError, OSError) as e:
        logger.warning(f"Symbol read failed for {path}: {e}")
        return SymbolSummary()


def describe_file(path: Path) -> str:
    """
    One-line description in the spirit of file(1), e.g.
    ``ELF 64-bit LSB pie executable, x86-64, dynamically linked,
    with debug_info, not stripped``.
    """
    if not is_elf(path):
        return "data"
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            header = elf.header
            section_names = {s.name for s in elf.iter_sections()}
            segment_types = {seg["p_type"] for seg in elf.iter_segments()}
    except (ELFError, OSError) as e:
        logger.warning(f"Cannot describe {path}: {e}")
        return "ELF (corrupted)"

    kind = _TYPE_NAMES.get(header["e_type"], str(header["e_type"]))
    if header["e_type"] == "ET_DYN" and "PT_INTERP" in segment_types:
        kind = "pie executable"

    parts = [
        f"ELF {elf.elfclass}-bit {'LSB' if elf.little_endian else 'MSB'} {kind}",
        _MACHINE_NAMES.get(header["e_machine"], str(header["e_machine"])),
    ]
    if header["e_type"] in ("ET_EXEC", "ET_DYN"):
        if "PT_DYNAMIC" in segment_types:
            parts.append("dynamically linked")
        else:
            parts.append("statically linked")
    if ".debug_info" in section_names:
        parts.append("with debug_info")
    parts.append("not stripped" if ".symtab" in section_names else "stripped")
    return ", ".join(parts)


def disassemble(
    path: Path,
    output: Path,
    objdump: str = "objdump",
    timeout: int = 120,
) -> CommandResult:
    """Run ``objdump -d`` on *path* and write the listing to *output*."""
    result, stdout = run_capture([objdump, "-d", str(path)], timeout=timeout)
    if result.ok:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(stdout)
        result.stdout_path_rel = output.name
    return result


def inspect_binary(
    path: Path,
    disassembly_out: Optional[Path] = None,
    objdump: str = "objdump",
    timeout: int = 120,
) -> InspectReport:
    """Gather everything the inspection step reports for one file."""
    if not path.is_file():
        raise FileNotFoundError(f"Binary not found: {path}")

    valid, meta = validate_elf(path) if is_elf(path) else (False, None)
    sections: List[SectionEntry] = []
    if valid:
        sections = list_sections(path)

    report = InspectReport(
        path=str(path),
        sha256=hash_file(path),
        size_bytes=path.stat().st_size,
        description=describe_file(path),
        is_elf=valid,
        elf=meta if valid else None,
        sections=sections,
        debug_presence=debug_presence(sections),
        symbols=summarize_symbols(path) if valid else SymbolSummary(),
    )
    if disassembly_out is not None and valid:
        report.disassembly = disassemble(path, disassembly_out, objdump, timeout)
    return report
