"""
optstrip — optimization-matrix builder and symbol stripper for ELF binaries.

Compile a C program across compiler optimization levels and symbol variants,
verify and compare the results, and strip symbols from binaries one at a
time or a whole directory at once.

Profile: linux-elf-gcc-c
"""

__version__ = "1.0.0"
TOOL_NAME = "optstrip"
TOOL_VERSION = "v1"
SCHEMA_VERSION = "1.0"
PROFILE_ID = "linux-elf-gcc-c"
