"""Shared fixtures: an isolated config, a fake git project and a fake embedder."""

from __future__ import annotations

import re
import zlib
from pathlib import Path

import pytest

from memkeep.config import EmbeddingConfig, MemkeepConfig
from memkeep.core import Memkeep
from memkeep.errors import UnavailableError
from memkeep.search.similarity import normalize

DIMS = 64


def bag_of_words(text: str) -> list[float]:
    vec = [0.0] * DIMS
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        vec[zlib.crc32(word.encode()) % DIMS] += 1.0
    return normalize(vec)


class FakeEmbedder:
    """Deterministic embeddings. Texts containing a key of `table` get that vector."""

    model = "fake-embed"

    def __init__(self, table: dict[str, list[float]] | None = None, available: bool = True) -> None:
        self.table = table or {}
        self.available = available
        self.calls: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def embed(self, text: str) -> list[float]:
        if not self.available:
            raise UnavailableError("fake embedder is down", remediation="turn it on")
        self.calls.append(text)
        for key, vec in self.table.items():
            if key in text:
                return normalize(vec)
        return bag_of_words(text)


@pytest.fixture
def config(tmp_path: Path) -> MemkeepConfig:
    return MemkeepConfig(
        global_dir=tmp_path / "home" / "memory",
        embedding=EmbeddingConfig(cache_dir=tmp_path / "cache"),
    )


@pytest.fixture
def project(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    (repo / "src").mkdir()
    return repo


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def service(config: MemkeepConfig, project: Path, embedder: FakeEmbedder) -> Memkeep:
    return Memkeep(config, cwd=project, embedder=embedder)
