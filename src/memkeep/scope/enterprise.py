"""Enterprise scope path lookup and validation."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from memkeep.errors import PermissionDeniedError

logger = logging.getLogger(__name__)

ENTERPRISE_PATH_ENV = "MEMKEEP_ENTERPRISE_PATH"
MANAGED_SETTINGS_FILENAME = "managed-settings.json"


def _managed_settings_candidates() -> list[Path]:
    return [
        Path.home() / ".memkeep" / MANAGED_SETTINGS_FILENAME,
        Path("/etc/memkeep") / MANAGED_SETTINGS_FILENAME,
    ]


def find_enterprise_path(
    configured: Path | None = None,
    settings_files: list[Path] | None = None,
) -> Path | None:
    """Configured path (env or toml) first, then managed-settings.json env block."""
    if configured:
        return configured

    for candidate in settings_files if settings_files is not None else _managed_settings_candidates():
        if not candidate.exists():
            continue
        try:
            settings = json.loads(candidate.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to parse %s: %s", candidate, e)
            continue
        value = (settings.get("env") or {}).get(ENTERPRISE_PATH_ENV)
        if value:
            logger.debug("Enterprise path from %s: %s", candidate, value)
            return Path(value).expanduser()
    return None


def validate_enterprise_path(path: Path) -> None:
    """Raise PermissionDeniedError unless path is an existing, read/write directory."""
    remediation = (
        f"Point {ENTERPRISE_PATH_ENV} at an existing directory you can read and write"
    )
    if not path.exists():
        raise PermissionDeniedError(
            f"Enterprise path does not exist: {path}", remediation=remediation
        )
    if not path.is_dir():
        raise PermissionDeniedError(
            f"Enterprise path is not a directory: {path}", remediation=remediation
        )
    if not os.access(path, os.R_OK | os.W_OK):
        raise PermissionDeniedError(
            f"Enterprise path is inaccessible: {path}", remediation=remediation
        )
