"""
Shared pytest fixtures for smolbrain tests.

Provides mock embedding providers to avoid loading ML models during testing.
"""

import hashlib
from pathlib import Path

import pytest

from smolbrain.api import Brain
from smolbrain.config import StoreConfig, save_config


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Generates consistent embeddings from a text hash - no ML model loading.
    Explicit vectors can be pinned per text for ranking tests.
    """

    dimension = 16
    model_name = "mock-model"

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimension: int = 16):
        self.vectors = dict(vectors or {})
        self.dimension = dimension
        self.embed_calls = 0

    def embed(self, text: str) -> list[float]:
        """Pinned vector if one is set, otherwise derived from the text hash."""
        self.embed_calls += 1
        if text in self.vectors:
            return self.vectors[text]
        h = hashlib.md5(text.encode()).hexdigest()
        # Values in [0.1, 1.1) so the vector is never zero
        values = [int(h[i:i + 2], 16) / 255.0 + 0.1 for i in range(0, 32, 2)]
        return (values * (self.dimension // len(values) + 1))[:self.dimension]


class OtherMockEmbeddingProvider(MockEmbeddingProvider):
    """Same vectors, different model identity."""

    model_name = "other-model"


class FailingEmbeddingProvider:
    """Provider whose every call fails, like an unreachable API."""

    dimension = 16
    model_name = "failing-model"

    def embed(self, text: str) -> list[float]:
        raise ConnectionError("embedding service unreachable")


def axis(i: int, dim: int = 16) -> list[float]:
    """Unit vector along one axis."""
    v = [0.0] * dim
    v[i] = 1.0
    return v


@pytest.fixture
def mock_embedder():
    return MockEmbeddingProvider()


@pytest.fixture
def mock_providers(monkeypatch):
    """
    Register the mock embedder in the provider registry under "mock".

    Use with a store config naming ``[embedding] name = "mock"`` to
    exercise the configured (non-injected) provider path.
    """
    from smolbrain.providers import get_registry
    registry = get_registry()
    registry._ensure_providers_loaded()
    monkeypatch.setitem(registry._embedding_providers, "mock", MockEmbeddingProvider)
    return registry


@pytest.fixture
def brain(tmp_path: Path, mock_embedder):
    """A fresh store with the mock embedding provider."""
    b = Brain(tmp_path / "store", embedding_provider=mock_embedder)
    yield b
    b.close()


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    """A store directory whose config names no embedding provider."""
    path = tmp_path / "store"
    save_config(StoreConfig(path=path, embedding=None))
    return path


@pytest.fixture
def keyword_brain(store_dir: Path):
    """A store with no embedding provider configured."""
    b = Brain(store_dir)
    yield b
    b.close()
