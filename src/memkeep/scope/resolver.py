"""Map logical scopes to root directories and pick a default scope.

Scope roots:
    global      ~/.memkeep/memory (configurable)
    project     <repo>/.memkeep/memory
    local       <repo>/.memkeep/memory/local  (kept out of git)
    enterprise  MEMKEEP_ENTERPRISE_PATH, opt-in only

<repo> is the git working-tree root, or cwd outside a repository.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from memkeep.config import MemkeepConfig
from memkeep.errors import PermissionDeniedError, ValidationError
from memkeep.models import Scope
from memkeep.scope.enterprise import (
    ENTERPRISE_PATH_ENV,
    find_enterprise_path,
    validate_enterprise_path,
)
from memkeep.scope.git import LOCAL_IGNORE_PATTERN, ensure_gitignored, find_git_root

logger = logging.getLogger(__name__)

# Most specific first. Enterprise, when enabled, is organization policy and wins.
SCOPE_PRECEDENCE = [Scope.ENTERPRISE, Scope.LOCAL, Scope.PROJECT, Scope.GLOBAL]


@dataclass
class DefaultScope:
    scope: Scope
    source: str  # forced | config | git-detection | fallback
    reason: str


def parse_scope(value: str | Scope) -> Scope:
    if isinstance(value, Scope):
        return value
    try:
        return Scope(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"Invalid scope: {value!r}",
            remediation=f"Use one of: {', '.join(Scope.values())}",
            field="scope",
        ) from None


class ScopeResolver:
    """Resolves scope roots for one working directory."""

    def __init__(self, config: MemkeepConfig, cwd: Path | None = None) -> None:
        self.config = config
        self.cwd = (cwd or Path.cwd()).resolve()
        self.git_root = find_git_root(self.cwd)

    @property
    def project_root(self) -> Path:
        return self.git_root or self.cwd

    @property
    def in_git_repo(self) -> bool:
        return self.git_root is not None

    def resolve_root(self, scope: str | Scope, for_write: bool = False) -> Path:
        """Return the root directory for scope, enforcing enterprise opt-in.

        for_write marks a mutating operation; only then is the local scope
        added to .gitignore.
        """
        scope = parse_scope(scope)
        if scope is Scope.GLOBAL:
            return self.config.global_dir
        if scope is Scope.PROJECT:
            return self.project_root / ".memkeep" / "memory"
        if scope is Scope.LOCAL:
            if for_write:
                self._ensure_local_excluded()
            return self.project_root / ".memkeep" / "memory" / "local"
        return self._resolve_enterprise()

    def _resolve_enterprise(self) -> Path:
        if not self.config.scopes.enterprise_enabled:
            raise PermissionDeniedError(
                "Enterprise scope is disabled",
                remediation=(
                    "Enable it with enterprise_enabled = true under [scopes] in "
                    "memkeep.toml, or set MEMKEEP_ENTERPRISE_ENABLED=1"
                ),
            )
        path = find_enterprise_path(self.config.enterprise_path)
        if path is None:
            raise PermissionDeniedError(
                "Enterprise scope is enabled but no enterprise path is configured",
                remediation=f"Set {ENTERPRISE_PATH_ENV} to the managed memory directory",
            )
        validate_enterprise_path(path)
        return path

    def _ensure_local_excluded(self) -> None:
        if self.git_root is None:
            return
        try:
            ensure_gitignored(self.git_root, LOCAL_IGNORE_PATTERN)
        except OSError as e:
            logger.warning("Could not update .gitignore in %s: %s", self.git_root, e)

    def resolve_default_scope(self, forced: str | Scope | None = None) -> DefaultScope:
        """forced > valid configured default > git working tree → project > global."""
        if forced:
            scope = parse_scope(forced)
            return DefaultScope(scope, "forced", f"Scope forced to {scope.value}")

        configured = self.config.scopes.default
        if configured:
            try:
                scope = parse_scope(configured)
            except ValidationError:
                logger.warning("Ignoring invalid default scope in config: %r", configured)
            else:
                return DefaultScope(scope, "config", "Using configured default scope")

        if self.in_git_repo:
            return DefaultScope(
                Scope.PROJECT,
                "git-detection",
                "In git repository, defaulting to project scope",
            )
        return DefaultScope(
            Scope.GLOBAL, "fallback", "Not in git repository, defaulting to global scope"
        )

    def accessible_scopes(self) -> list[Scope]:
        """Scopes readable from here, in precedence order."""
        scopes = []
        for scope in SCOPE_PRECEDENCE:
            if scope is Scope.ENTERPRISE:
                try:
                    self._resolve_enterprise()
                except PermissionDeniedError as e:
                    if self.config.scopes.enterprise_enabled:
                        logger.warning("Skipping enterprise scope: %s", e)
                    continue
            scopes.append(scope)
        return scopes
