"""
Embedding vectors and linear-scan similarity ranking.

Vectors are stored unit-normalized as float32 blobs, so cosine similarity
is a plain dot product. Ranking scores every eligible vector against the
query; there is no approximate index.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .errors import EmbeddingProviderError
from .providers.base import EmbeddingProvider

logger = logging.getLogger(__name__)

VECTOR_DTYPE = np.float32


@dataclass(frozen=True)
class EmbeddingIdentity:
    """Which provider and model produced a vector, and its dimension.
    Vectors are only compared with vectors of the same key and dimension."""
    provider: str
    model: str
    dimension: int

    @property
    def key(self) -> str:
        return f"{self.provider}/{self.model}"


def normalize(vector) -> np.ndarray:
    """
    Return ``vector`` as a unit-length float32 array.

    Raises:
        EmbeddingProviderError: If the vector is empty, zero or not finite
    """
    arr = np.asarray(vector, dtype=VECTOR_DTYPE).reshape(-1)
    if arr.size == 0:
        raise EmbeddingProviderError("Embedding provider returned an empty vector")
    if not np.all(np.isfinite(arr)):
        raise EmbeddingProviderError("Embedding provider returned non-finite values")
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        raise EmbeddingProviderError("Embedding provider returned a zero vector")
    return arr / norm


def encode(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=VECTOR_DTYPE).tobytes()


def decode(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=VECTOR_DTYPE)


def rank(query: np.ndarray, candidates: list[tuple[int, bytes]]) -> list[tuple[int, float]]:
    """
    Score candidates by dot product with ``query``, best first.

    Args:
        query: Unit-normalized query vector
        candidates: (id, vector blob) pairs in insertion order

    Returns:
        (id, score) pairs sorted by descending score; equal scores keep
        the candidates' original order
    """
    if not candidates:
        return []

    dim = query.shape[0]
    blobs = [blob for _, blob in candidates]
    expected = dim * np.dtype(VECTOR_DTYPE).itemsize
    if any(len(blob) != expected for blob in blobs):
        raise EmbeddingProviderError(
            f"Stored vectors do not match the query dimension ({dim}). "
            "Run 'smolbrain reembed' after changing the embedding model."
        )

    matrix = np.frombuffer(b"".join(blobs), dtype=VECTOR_DTYPE).reshape(len(blobs), dim)
    scores = matrix @ query
    order = np.argsort(-scores, kind="stable")
    return [(candidates[i][0], float(scores[i])) for i in order]


class NormalizedEmbeddingProvider:
    """
    Wraps a provider so every vector honours the store's contract:
    unit length, fixed dimension, failures reported as EmbeddingProviderError.
    """

    def __init__(self, provider: EmbeddingProvider, identity: EmbeddingIdentity):
        self._provider = provider
        self.identity = identity

    @property
    def dimension(self) -> int:
        return self.identity.dimension

    @property
    def model_name(self) -> str:
        return self.identity.model

    def embed(self, text: str) -> np.ndarray:
        try:
            raw = self._provider.embed(text)
        except EmbeddingProviderError:
            raise
        except Exception as e:
            raise EmbeddingProviderError(
                f"Embedding provider '{self.identity.key}' failed: {e}"
            ) from e
        vector = normalize(raw)
        if vector.shape[0] != self.identity.dimension:
            raise EmbeddingProviderError(
                f"Embedding provider '{self.identity.key}' returned {vector.shape[0]} "
                f"dimensions, expected {self.identity.dimension}"
            )
        return vector
