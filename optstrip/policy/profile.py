"""
Profile — build and strip policy descriptors.

The profiles hold every policy knob (flags, naming suffixes, expected
program output) so that core build and strip logic contains no opinions.
Changing a flag set is a profile change, not a code change.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

from optstrip import PROFILE_ID
from optstrip.io.schema import OptLevel, VariantType


@dataclass(frozen=True)
class VariantDelta:
    """Per-variant compile policy delta."""

    add_cflags: Tuple[str, ...] = ()
    expect_debug: bool = False
    expect_symtab: bool = True


@dataclass(frozen=True)
class BuildProfile:
    """Describes how the optimization matrix is compiled and checked."""

    profile_id: str
    base_cflags: Tuple[str, ...]
    optimizations: Tuple[OptLevel, ...]
    variants: Tuple[VariantType, ...]
    variant_deltas: Dict[str, VariantDelta] = field(default_factory=dict)

    lto_cflags: Tuple[str, ...] = ("-flto",)
    pgo_generate_flag: str = "-fprofile-generate"
    pgo_use_flags: Tuple[str, ...] = ("-fprofile-correction", "-Wno-missing-profile")

    expected_output: str = "Hello, World!"
    binary_prefix: str = "hello"

    @classmethod
    def v1(cls) -> BuildProfile:
        """The default profile: every optimization level, all three variants."""
        return cls(
            profile_id=PROFILE_ID,
            base_cflags=("-std=c11", "-Wall"),
            optimizations=tuple(OptLevel),
            variants=(VariantType.DEBUG, VariantType.RELEASE, VariantType.STRIPPED),
            variant_deltas={
                VariantType.DEBUG.value: VariantDelta(
                    add_cflags=("-g",), expect_debug=True, expect_symtab=True,
                ),
                VariantType.RELEASE.value: VariantDelta(
                    add_cflags=(), expect_debug=False, expect_symtab=True,
                ),
                VariantType.STRIPPED.value: VariantDelta(
                    add_cflags=("-s",), expect_debug=False, expect_symtab=False,
                ),
            },
        )

    def delta(self, variant: VariantType) -> VariantDelta:
        return self.variant_deltas[variant.value]

    def binary_name(self, opt: OptLevel) -> str:
        """hello_O2, hello_Ofast, ..."""
        return f"{self.binary_prefix}_{opt.value}"


@dataclass(frozen=True)
class StripProfile:
    """Naming and verification policy for strip operations."""

    debug_suffix: str = "_debug_stripped"
    all_suffix: str = "_all_stripped"
    report_name: str = "batch_report.json"

    @classmethod
    def v1(cls) -> StripProfile:
        return cls()

    def debug_name(self, name: str) -> str:
        return f"{name}{self.debug_suffix}"

    def all_name(self, name: str) -> str:
        return f"{name}{self.all_suffix}"
