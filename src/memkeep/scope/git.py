"""Git working-tree detection and .gitignore upkeep for the local scope."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

LOCAL_IGNORE_PATTERN = ".memkeep/memory/local/"


def find_git_root(start: Path) -> Path | None:
    """Walk up from start, return the first directory containing .git."""
    p = start.resolve()
    while True:
        if (p / ".git").exists():
            return p
        if p == p.parent:
            return None
        p = p.parent


def project_name(start: Path) -> str:
    root = find_git_root(start)
    return (root or start.resolve()).name


def ensure_gitignored(repo_root: Path, pattern: str = LOCAL_IGNORE_PATTERN) -> bool:
    """Add pattern to repo_root/.gitignore once. Returns True when the file changed."""
    gitignore = repo_root / ".gitignore"
    existing = ""
    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8")
        lines = [line.rstrip() for line in existing.splitlines()]
        if pattern in lines or pattern.rstrip("/") in lines:
            return False

    prefix = "" if not existing or existing.endswith("\n") else "\n"
    gitignore.write_text(
        f"{existing}{prefix}# memkeep local scope (personal, not committed)\n{pattern}\n",
        encoding="utf-8",
    )
    logger.info("Added %s to %s", pattern, gitignore)
    return True
