"""
Writer — serialize optstrip outputs to JSON files and load them back.

Filesystem layout per workspace:
    <workspace>/src/hello_world.c
    <workspace>/artifacts/build_receipt.json
    <workspace>/artifacts/<compiler>/<opt>/<variant>/bin/hello_<opt>
    <workspace>/artifacts/<compiler>/<opt>/<variant>/logs/*.stdout|*.stderr
"""
import json
from pathlib import Path

from pydantic import BaseModel, ValidationError

from optstrip.io.schema import BuildReceipt

RECEIPT_NAME = "build_receipt.json"


def receipt_path(artifacts_dir: Path) -> Path:
    return artifacts_dir / RECEIPT_NAME


def write_json(model: BaseModel, path: Path) -> Path:
    """
    Write *model* as pretty, key-sorted JSON to *path*.

    Creates the parent directory if it does not exist.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            model.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )
    return path


def write_receipt(receipt: BuildReceipt, artifacts_dir: Path) -> Path:
    """Save the single authoritative build_receipt.json."""
    return write_json(receipt, receipt_path(artifacts_dir))


def load_receipt(artifacts_dir: Path) -> BuildReceipt:
    """
    Load build_receipt.json from *artifacts_dir*.

    Raises
    ------
    FileNotFoundError
        If no receipt exists.
    ValueError
        If the receipt cannot be parsed.
    """
    path = receipt_path(artifacts_dir)
    if not path.is_file():
        raise FileNotFoundError(f"No build receipt at {path} (run 'optstrip build' first)")
    try:
        return BuildReceipt.model_validate_json(path.read_text())
    except ValidationError as e:
        raise ValueError(f"Malformed build receipt {path}: {e}") from e
