"""Tests for scope resolution, enterprise opt-in and .gitignore upkeep."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from memkeep.config import MemkeepConfig, ScopeConfig
from memkeep.errors import PermissionDeniedError, ValidationError
from memkeep.models import Scope
from memkeep.scope import enterprise
from memkeep.scope.enterprise import find_enterprise_path
from memkeep.scope.git import LOCAL_IGNORE_PATTERN, ensure_gitignored, find_git_root
from memkeep.scope.resolver import ScopeResolver, parse_scope


@pytest.fixture(autouse=True)
def no_managed_settings(monkeypatch):
    monkeypatch.setattr(enterprise, "_managed_settings_candidates", lambda: [])


class TestGit:
    def test_find_git_root_from_subdir(self, project: Path):
        assert find_git_root(project / "src") == project.resolve()

    def test_find_git_root_outside_repo(self, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        assert find_git_root(plain) is None

    def test_gitignore_created(self, project: Path):
        assert ensure_gitignored(project) is True
        lines = (project / ".gitignore").read_text().splitlines()
        assert LOCAL_IGNORE_PATTERN in lines

    def test_gitignore_idempotent(self, project: Path):
        ensure_gitignored(project)
        assert ensure_gitignored(project) is False
        content = (project / ".gitignore").read_text()
        assert content.count(LOCAL_IGNORE_PATTERN) == 1

    def test_gitignore_appends_to_existing(self, project: Path):
        (project / ".gitignore").write_text("node_modules/")
        ensure_gitignored(project)
        lines = (project / ".gitignore").read_text().splitlines()
        assert lines[0] == "node_modules/"
        assert LOCAL_IGNORE_PATTERN in lines

    def test_gitignore_trailing_whitespace(self, project: Path):
        (project / ".gitignore").write_text(f"{LOCAL_IGNORE_PATTERN}   \n")
        assert ensure_gitignored(project) is False


class TestResolveRoot:
    def test_global(self, config: MemkeepConfig, project: Path):
        resolver = ScopeResolver(config, project)
        assert resolver.resolve_root("global") == config.global_dir

    def test_project_uses_git_root(self, config: MemkeepConfig, project: Path):
        resolver = ScopeResolver(config, project / "src")
        assert resolver.resolve_root(Scope.PROJECT) == project.resolve() / ".memkeep" / "memory"

    def test_local_is_gitignored_on_write(self, config: MemkeepConfig, project: Path):
        resolver = ScopeResolver(config, project)
        root = resolver.resolve_root("local", for_write=True)
        assert root == project.resolve() / ".memkeep" / "memory" / "local"
        assert LOCAL_IGNORE_PATTERN in (project / ".gitignore").read_text()

    def test_local_read_leaves_gitignore_alone(self, config: MemkeepConfig, project: Path):
        resolver = ScopeResolver(config, project)
        assert resolver.resolve_root("local") == project.resolve() / ".memkeep" / "memory" / "local"
        assert not (project / ".gitignore").exists()

    def test_local_outside_git_leaves_no_gitignore(self, config: MemkeepConfig, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        ScopeResolver(config, plain).resolve_root("local", for_write=True)
        assert not (plain / ".gitignore").exists()

    def test_invalid_scope(self, config: MemkeepConfig, project: Path):
        with pytest.raises(ValidationError) as exc:
            ScopeResolver(config, project).resolve_root("team")
        assert "global" in exc.value.remediation

    def test_parse_scope_case_insensitive(self):
        assert parse_scope("PROJECT") is Scope.PROJECT


class TestEnterprise:
    def test_disabled(self, config: MemkeepConfig, project: Path):
        with pytest.raises(PermissionDeniedError) as exc:
            ScopeResolver(config, project).resolve_root("enterprise")
        assert "enterprise_enabled" in exc.value.remediation

    def test_enabled_without_path(self, config: MemkeepConfig, project: Path):
        config.scopes.enterprise_enabled = True
        with pytest.raises(PermissionDeniedError) as exc:
            ScopeResolver(config, project).resolve_root("enterprise")
        assert "MEMKEEP_ENTERPRISE_PATH" in exc.value.remediation

    def test_enabled_with_missing_dir(self, config: MemkeepConfig, project: Path, tmp_path: Path):
        config.scopes.enterprise_enabled = True
        config.enterprise_path = tmp_path / "missing"
        with pytest.raises(PermissionDeniedError, match="does not exist"):
            ScopeResolver(config, project).resolve_root("enterprise")

    def test_enabled_with_file_not_dir(self, config: MemkeepConfig, project: Path, tmp_path: Path):
        config.scopes.enterprise_enabled = True
        config.enterprise_path = tmp_path / "file.txt"
        config.enterprise_path.write_text("x")
        with pytest.raises(PermissionDeniedError, match="not a directory"):
            ScopeResolver(config, project).resolve_root("enterprise")

    def test_enabled_with_valid_dir(self, config: MemkeepConfig, project: Path, tmp_path: Path):
        ent = tmp_path / "enterprise"
        ent.mkdir()
        config.scopes.enterprise_enabled = True
        config.enterprise_path = ent
        assert ScopeResolver(config, project).resolve_root("enterprise") == ent

    def test_managed_settings_file(self, tmp_path: Path):
        settings = tmp_path / "managed-settings.json"
        settings.write_text(json.dumps({"env": {"MEMKEEP_ENTERPRISE_PATH": str(tmp_path / "ent")}}))
        assert find_enterprise_path(None, [settings]) == tmp_path / "ent"

    def test_managed_settings_corrupt(self, tmp_path: Path):
        settings = tmp_path / "managed-settings.json"
        settings.write_text("{not json")
        assert find_enterprise_path(None, [settings]) is None


class TestDefaultScope:
    def test_forced_wins(self, config: MemkeepConfig, project: Path):
        config.scopes.default = "global"
        result = ScopeResolver(config, project).resolve_default_scope("local")
        assert result.scope is Scope.LOCAL
        assert result.source == "forced"

    def test_config_default(self, config: MemkeepConfig, project: Path):
        config.scopes.default = "global"
        result = ScopeResolver(config, project).resolve_default_scope()
        assert result.scope is Scope.GLOBAL
        assert result.source == "config"

    def test_invalid_config_default_falls_through(self, config: MemkeepConfig, project: Path):
        config.scopes.default = "team-wide"
        result = ScopeResolver(config, project).resolve_default_scope()
        assert result.scope is Scope.PROJECT
        assert result.source == "git-detection"

    def test_outside_git_is_global(self, config: MemkeepConfig, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        result = ScopeResolver(config, plain).resolve_default_scope()
        assert result.scope is Scope.GLOBAL
        assert result.source == "fallback"


class TestAccessibleScopes:
    def test_without_enterprise(self, config: MemkeepConfig, project: Path):
        scopes = ScopeResolver(config, project).accessible_scopes()
        assert scopes == [Scope.LOCAL, Scope.PROJECT, Scope.GLOBAL]

    def test_with_enterprise(self, config: MemkeepConfig, project: Path, tmp_path: Path):
        ent = tmp_path / "enterprise"
        ent.mkdir()
        config.scopes = ScopeConfig(enterprise_enabled=True)
        config.enterprise_path = ent
        scopes = ScopeResolver(config, project).accessible_scopes()
        assert scopes == [Scope.ENTERPRISE, Scope.LOCAL, Scope.PROJECT, Scope.GLOBAL]

    def test_enabled_but_invalid_enterprise_skipped(self, config: MemkeepConfig, project: Path, tmp_path: Path):
        config.scopes.enterprise_enabled = True
        config.enterprise_path = tmp_path / "missing"
        scopes = ScopeResolver(config, project).accessible_scopes()
        assert Scope.ENTERPRISE not in scopes
