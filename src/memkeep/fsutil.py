"""Atomic file writes and JSON state files."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from memkeep.errors import CorruptionError

logger = logging.getLogger(__name__)


def _write_temp(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as tmp:
        tmp.write(content)
    return Path(tmp.name)


def atomic_write_text(path: Path, content: str) -> None:
    """Write to a sibling temp file, then rename over the target."""
    tmp_path = _write_temp(path, content)
    try:
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def create_text(path: Path, content: str) -> None:
    """Publish a new file atomically. Raises FileExistsError instead of overwriting."""
    tmp_path = _write_temp(path, content)
    try:
        os.link(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def write_json(path: Path, data: dict) -> None:
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def read_json(path: Path) -> dict | None:
    """Load a JSON object. None when missing; CorruptionError when unparseable."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CorruptionError(
            f"{path.name} is not valid JSON: {e}",
            remediation=f"Run repair to rebuild {path.name}",
        ) from e
    if not isinstance(data, dict):
        raise CorruptionError(
            f"{path.name} does not contain a JSON object",
            remediation=f"Run repair to rebuild {path.name}",
        )
    return data
