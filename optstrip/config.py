"""
Tool configuration
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Tool settings, overridable via OPTSTRIP_* environment variables."""

    # Workspace
    WORKSPACE: str = "./optstrip_work"

    # External tools
    CC: str = "gcc"
    STRIP: str = "strip"
    OBJCOPY: str = "objcopy"
    OBJDUMP: str = "objdump"
    LLVM_PROFDATA: str = "llvm-profdata"

    # Batch stripping
    BINARIES_DIR: str = "./binaries"
    STRIPPED_DIR: str = "./stripped_binaries"

    # Timeouts
    COMMAND_TIMEOUT: int = 120  # seconds, per compile/strip command
    RUN_TIMEOUT: int = 10  # seconds, per verification run

    class Config:
        env_prefix = "OPTSTRIP_"
        env_file = ".env"
        case_sensitive = True


def get_settings() -> Settings:
    """Fresh settings instance (re-reads the environment)."""
    return Settings()
