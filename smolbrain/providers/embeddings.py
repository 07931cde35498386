"""
Embedding providers.

Libraries are imported when a provider is constructed, so listing and
keyword operations never pay for loading a model.
"""

import os

from .base import get_registry


class SentenceTransformerEmbedding:
    """
    Local embedding provider using sentence-transformers.

    Default model is all-MiniLM-L6-v2 (384 dimensions). Runs offline once
    the model has been downloaded.
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", device: str | None = None):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise RuntimeError(
                "SentenceTransformerEmbedding requires 'sentence-transformers' library. "
                "Install with: pip install 'smolbrain[local]'"
            )

        self.model_name = model
        self._model = SentenceTransformer(model, device=device)

    @property
    def dimension(self) -> int:
        return self._model.get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        return self._model.encode(text, normalize_embeddings=True).tolist()


class OpenAIEmbedding:
    """
    Embedding provider using OpenAI's embeddings API.

    Requires: SMOLBRAIN_OPENAI_API_KEY or OPENAI_API_KEY environment variable.

    Default model is text-embedding-3-small (1536 dimensions).
    """

    _DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    # Keeps requests well inside the model's token limit
    MAX_CONTENT_LENGTH = 100_000

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        dimensions: int | None = None,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError(
                "OpenAIEmbedding requires 'openai' library. "
                "Install with: pip install 'smolbrain[openai]'"
            )

        key = api_key or os.environ.get("SMOLBRAIN_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set SMOLBRAIN_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self.model_name = model
        self._requested_dimensions = dimensions
        self._dimension = dimensions or self._DIMENSIONS.get(model)
        self._client = OpenAI(api_key=key)

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            # Unknown model: ask once and remember
            self._dimension = len(self.embed("dimension check"))
        return self._dimension

    def embed(self, text: str) -> list[float]:
        truncated = text[:self.MAX_CONTENT_LENGTH]
        kwargs = {"model": self.model_name, "input": truncated}
        if self._requested_dimensions:
            kwargs["dimensions"] = self._requested_dimensions
        response = self._client.embeddings.create(**kwargs)
        return response.data[0].embedding


# Register providers
_registry = get_registry()
_registry.register_embedding("sentence-transformers", SentenceTransformerEmbedding)
_registry.register_embedding("openai", OpenAIEmbedding)
