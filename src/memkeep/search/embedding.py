"""Embedding provider protocol and the Ollama HTTP client."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

import requests

from memkeep.config import EmbeddingConfig
from memkeep.errors import CorruptionError, UnavailableError
from memkeep.fsutil import read_json, write_json
from memkeep.search.similarity import normalize

logger = logging.getLogger(__name__)

MAX_EMBED_CHARS = 6000
AVAILABILITY_FILENAME = "availability.json"


@runtime_checkable
class Embedder(Protocol):
    """Contract consumed by semantic search and repair."""

    @property
    def model(self) -> str: ...

    def embed(self, text: str) -> list[float]:
        """Return a unit-length vector for text. Raises UnavailableError."""
        ...

    def is_available(self) -> bool:
        """Cheap reachability check, cached for the session."""
        ...


class AvailabilityCache:
    """Reachability verdicts persisted per session id, so a dead endpoint
    costs one timeout per session rather than one per call."""

    def __init__(self, cache_dir: Path, session_id: str | None, ttl: int) -> None:
        self.path = cache_dir / AVAILABILITY_FILENAME
        self.key = session_id or "default"
        self.ttl = ttl

    def get(self) -> bool | None:
        try:
            data = read_json(self.path) or {}
        except CorruptionError:
            return None
        record = data.get(self.key)
        if not isinstance(record, dict):
            return None
        if time.time() - float(record.get("checkedAt", 0)) > self.ttl:
            return None
        return bool(record.get("available"))

    def put(self, available: bool) -> None:
        try:
            data = read_json(self.path) or {}
        except CorruptionError:
            data = {}
        data[self.key] = {"available": available, "checkedAt": time.time()}
        try:
            write_json(self.path, data)
        except OSError as e:
            logger.debug("Could not persist availability cache: %s", e)


class OllamaEmbedder:
    """Embeddings from an Ollama server via POST /api/embed."""

    def __init__(self, config: EmbeddingConfig, session_id: str | None = None) -> None:
        self.config = config
        self.base_url = config.endpoint.rstrip("/")
        self._model = config.model
        self._available: bool | None = None
        self._cache = AvailabilityCache(config.cache_dir, session_id, config.availability_ttl)

    @property
    def model(self) -> str:
        return self._model

    def _candidates(self) -> list[str]:
        models = [self._model]
        for m in [self.config.model, *self.config.fallback_models]:
            if m not in models:
                models.append(m)
        return models

    def _post_embed(self, model: str, text: str) -> list[float]:
        response = requests.post(
            f"{self.base_url}/api/embed",
            json={"model": model, "input": text},
            timeout=self.config.timeout,
        )
        response.raise_for_status()
        embeddings = response.json().get("embeddings") or []
        if not embeddings or not embeddings[0]:
            raise ValueError(f"empty embedding from model {model}")
        return [float(x) for x in embeddings[0]]

    def embed(self, text: str) -> list[float]:
        if self._available is False:
            raise UnavailableError(
                f"Embedding provider at {self.base_url} is unavailable",
                remediation="Start Ollama or set MEMKEEP_EMBEDDING_ENDPOINT",
            )
        text = text[:MAX_EMBED_CHARS]
        last_error: Exception | None = None
        for model in self._candidates():
            try:
                vector = self._post_embed(model, text)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                # Endpoint is down; other models won't fare better.
                last_error = e
                break
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning("Embedding with model %s failed: %s", model, e)
                last_error = e
                continue
            if model != self._model:
                logger.info("Falling back to embedding model %s", model)
                self._model = model
            return normalize(vector)

        self._mark(False)
        raise UnavailableError(
            f"Embedding provider at {self.base_url} failed: {last_error}",
            remediation=(
                f"Start Ollama and pull a model (ollama pull {self.config.model}), "
                "or set MEMKEEP_EMBEDDING_ENDPOINT"
            ),
        ) from last_error

    def is_available(self) -> bool:
        if self._available is not None:
            return self._available
        cached = self._cache.get()
        if cached is not None:
            self._available = cached
            return cached

        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=self.config.timeout)
            response.raise_for_status()
            names = [m.get("name", "") for m in response.json().get("models") or []]
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Embedding provider unreachable at %s: %s", self.base_url, e)
            self._mark(False)
            return False

        available = any(name.split(":")[0] == m for name in names for m in self._candidates())
        if not available:
            logger.warning("No embedding model from %s installed at %s", self._candidates(), self.base_url)
        self._mark(available)
        return available

    def _mark(self, available: bool) -> None:
        self._available = available
        self._cache.put(available)
