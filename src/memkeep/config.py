"""Configuration loading from environment variables and memkeep.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".memkeep"
_DEFAULT_GLOBAL_DIR = _DEFAULT_HOME / "memory"
_CONFIG_FILENAME = "memkeep.toml"

DEFAULT_EMBEDDING_ENDPOINT = "http://localhost:11434"
DEFAULT_EMBEDDING_MODEL = "embeddinggemma"
DEFAULT_FALLBACK_MODELS = ["nomic-embed-text", "all-minilm"]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ScopeConfig:
    """Scope selection defaults."""

    default: str | None = None
    enterprise_enabled: bool = False


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration."""

    endpoint: str = DEFAULT_EMBEDDING_ENDPOINT
    model: str = DEFAULT_EMBEDDING_MODEL
    fallback_models: list[str] = field(default_factory=lambda: list(DEFAULT_FALLBACK_MODELS))
    cache_dir: Path = _DEFAULT_HOME / "cache"
    timeout: float = 5.0
    availability_ttl: int = 300


@dataclass
class MemkeepConfig:
    """Top-level memkeep configuration."""

    scopes: ScopeConfig = field(default_factory=ScopeConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    global_dir: Path = _DEFAULT_GLOBAL_DIR
    enterprise_path: Path | None = None
    session_id: str | None = None
    prune_ttl_days: int = 7
    log_level: str = "INFO"


def _find_config_file(cwd: Path) -> Path | None:
    for candidate in [
        cwd / _CONFIG_FILENAME,
        cwd / ".memkeep" / _CONFIG_FILENAME,
        _DEFAULT_HOME / _CONFIG_FILENAME,
    ]:
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Path | None = None, cwd: Path | None = None) -> MemkeepConfig:
    """Load configuration from environment variables and optional memkeep.toml.

    Priority: environment variables > memkeep.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    elif config_path is None:
        found = _find_config_file(cwd or Path.cwd())
        if found:
            file_data = tomllib.loads(found.read_text())

    scopes_data = file_data.get("scopes", {})
    embedding_data = file_data.get("embedding", {})

    enterprise_path = os.getenv("MEMKEEP_ENTERPRISE_PATH", file_data.get("enterprise_path"))
    fallback_models = embedding_data.get("fallback_models", DEFAULT_FALLBACK_MODELS)

    config = MemkeepConfig(
        scopes=ScopeConfig(
            default=os.getenv("MEMKEEP_DEFAULT_SCOPE", scopes_data.get("default")),
            enterprise_enabled=_env_bool(
                "MEMKEEP_ENTERPRISE_ENABLED", bool(scopes_data.get("enterprise_enabled", False))
            ),
        ),
        embedding=EmbeddingConfig(
            endpoint=os.getenv(
                "MEMKEEP_EMBEDDING_ENDPOINT",
                embedding_data.get("endpoint", DEFAULT_EMBEDDING_ENDPOINT),
            ),
            model=os.getenv(
                "MEMKEEP_EMBEDDING_MODEL", embedding_data.get("model", DEFAULT_EMBEDDING_MODEL)
            ),
            fallback_models=list(fallback_models),
            cache_dir=Path(
                os.getenv(
                    "MEMKEEP_CACHE_DIR",
                    embedding_data.get("cache_dir", str(_DEFAULT_HOME / "cache")),
                )
            ).expanduser(),
            timeout=float(
                os.getenv("MEMKEEP_EMBEDDING_TIMEOUT", embedding_data.get("timeout", 5.0))
            ),
            availability_ttl=int(embedding_data.get("availability_ttl", 300)),
        ),
        global_dir=Path(
            os.getenv("MEMKEEP_GLOBAL_DIR", file_data.get("global_dir", str(_DEFAULT_GLOBAL_DIR)))
        ).expanduser(),
        enterprise_path=Path(enterprise_path).expanduser() if enterprise_path else None,
        session_id=os.getenv("MEMKEEP_SESSION_ID", file_data.get("session_id")),
        prune_ttl_days=int(os.getenv("MEMKEEP_PRUNE_TTL_DAYS", file_data.get("prune_ttl_days", 7))),
        log_level=os.getenv("MEMKEEP_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
