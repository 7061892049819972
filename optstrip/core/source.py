"""
Source preparation — the canonical hello_world.c and its identity.
"""
from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

from optstrip.io.schema import SourceFile, SourceIdentity, hash_file

SOURCE_NAME = "hello_world.c"

HELLO_WORLD_C = """\
#include <stdio.h>

int main(void) {
    printf("Hello, World!\\n");
    return 0;
}
"""


def source_path(workspace: Path) -> Path:
    return workspace / "src" / SOURCE_NAME


def write_source(workspace: Path, custom_source: Optional[Path] = None) -> SourceIdentity:
    """
    Write the program to ``<workspace>/src/hello_world.c``.

    Overwrites any previous copy.  When *custom_source* is given its
    content is used instead of the canonical Hello, World! program.
    """
    dest = source_path(workspace)
    dest.parent.mkdir(parents=True, exist_ok=True)

    if custom_source is not None:
        if not custom_source.is_file():
            raise FileNotFoundError(f"Source file not found: {custom_source}")
        shutil.copyfile(custom_source, dest)
    else:
        dest.write_text(HELLO_WORLD_C)

    return SourceIdentity(
        entry=SourceFile(
            path_rel=dest.relative_to(workspace).as_posix(),
            sha256=hash_file(dest),
            size_bytes=dest.stat().st_size,
        ),
        canonical=custom_source is None,
    )


def read_identity(workspace: Path) -> SourceIdentity:
    """Identity of an already-prepared workspace source."""
    src = source_path(workspace)
    if not src.is_file():
        raise FileNotFoundError(
            f"No prepared source at {src} (run 'optstrip prepare' first)"
        )
    return SourceIdentity(
        entry=SourceFile(
            path_rel=src.relative_to(workspace).as_posix(),
            sha256=hash_file(src),
            size_bytes=src.stat().st_size,
        ),
        canonical=src.read_text() == HELLO_WORLD_C,
    )
