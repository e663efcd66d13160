"""Tests for configuration loading."""

import pytest
from pathlib import Path

from memkeep.config import load_config

ENV_KEYS = [
    "MEMKEEP_GLOBAL_DIR",
    "MEMKEEP_DEFAULT_SCOPE",
    "MEMKEEP_ENTERPRISE_ENABLED",
    "MEMKEEP_ENTERPRISE_PATH",
    "MEMKEEP_EMBEDDING_ENDPOINT",
    "MEMKEEP_EMBEDDING_MODEL",
    "MEMKEEP_EMBEDDING_TIMEOUT",
    "MEMKEEP_CACHE_DIR",
    "MEMKEEP_SESSION_ID",
    "MEMKEEP_PRUNE_TTL_DAYS",
    "MEMKEEP_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = load_config(cwd=tmp_path)
        assert config.scopes.default is None
        assert config.scopes.enterprise_enabled is False
        assert config.embedding.endpoint == "http://localhost:11434"
        assert config.embedding.model == "embeddinggemma"
        assert config.embedding.fallback_models == ["nomic-embed-text", "all-minilm"]
        assert config.global_dir.name == "memory"
        assert config.log_level == "INFO"
        assert config.prune_ttl_days == 7

    def test_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MEMKEEP_DEFAULT_SCOPE", "global")
        monkeypatch.setenv("MEMKEEP_ENTERPRISE_ENABLED", "true")
        monkeypatch.setenv("MEMKEEP_EMBEDDING_TIMEOUT", "2.5")
        monkeypatch.setenv("MEMKEEP_GLOBAL_DIR", str(tmp_path / "g"))

        config = load_config(cwd=tmp_path)
        assert config.scopes.default == "global"
        assert config.scopes.enterprise_enabled is True
        assert config.embedding.timeout == 2.5
        assert config.global_dir == tmp_path / "g"

    def test_toml_file(self, tmp_path: Path):
        toml_path = tmp_path / "memkeep.toml"
        toml_path.write_text("""
log_level = "DEBUG"
prune_ttl_days = 14

[scopes]
default = "local"
enterprise_enabled = true

[embedding]
endpoint = "http://ollama:11434"
model = "nomic-embed-text"
fallback_models = ["all-minilm"]
timeout = 3
""")
        config = load_config(toml_path)
        assert config.scopes.default == "local"
        assert config.scopes.enterprise_enabled is True
        assert config.embedding.endpoint == "http://ollama:11434"
        assert config.embedding.model == "nomic-embed-text"
        assert config.embedding.fallback_models == ["all-minilm"]
        assert config.embedding.timeout == 3.0
        assert config.log_level == "DEBUG"
        assert config.prune_ttl_days == 14

    def test_toml_discovered_in_cwd(self, tmp_path: Path):
        (tmp_path / "memkeep.toml").write_text('[scopes]\ndefault = "project"\n')
        config = load_config(cwd=tmp_path)
        assert config.scopes.default == "project"

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MEMKEEP_EMBEDDING_MODEL", "all-minilm")
        toml_path = tmp_path / "memkeep.toml"
        toml_path.write_text('[embedding]\nmodel = "nomic-embed-text"\n')
        config = load_config(toml_path)
        assert config.embedding.model == "all-minilm"  # env wins

    def test_enterprise_path_from_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MEMKEEP_ENTERPRISE_PATH", str(tmp_path / "ent"))
        config = load_config(cwd=tmp_path)
        assert config.enterprise_path == tmp_path / "ent"
