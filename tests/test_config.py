"""
Tests for store configuration, provider registry and embedding math.
"""

import numpy as np
import pytest

from smolbrain.api import Brain
from smolbrain.config import (
    CONFIG_FILENAME,
    ProviderConfig,
    StoreConfig,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)
from smolbrain.errors import EmbeddingProviderError
from smolbrain.providers import get_registry
from smolbrain.similarity import decode, encode, normalize, rank


class TestConfig:

    def test_round_trip(self, tmp_path):
        config = StoreConfig(
            path=tmp_path,
            embedding=ProviderConfig("openai", {"model": "text-embedding-3-large"}),
            recent_limit=5,
        )
        save_config(config)
        loaded = load_config(tmp_path)
        assert loaded.embedding == config.embedding
        assert loaded.recent_limit == 5
        assert loaded.created == config.created

    def test_no_provider_round_trip(self, tmp_path):
        save_config(StoreConfig(path=tmp_path, embedding=None))
        assert load_config(tmp_path).embedding is None

    def test_create_on_first_use(self, tmp_path, monkeypatch):
        monkeypatch.setattr("smolbrain.config.detect_default_embedding", lambda: None)
        config = load_or_create_config(tmp_path / "new")
        assert (tmp_path / "new" / CONFIG_FILENAME).exists()
        assert config.embedding is None

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[store]\nversion = 99\n')
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_invalid_recent_limit(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[status]\nrecent = -3\n')
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_env_store_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SMOLBRAIN_STORE_PATH", str(tmp_path / "env-store"))
        assert get_default_store_path() == (tmp_path / "env-store").resolve()

    def test_brain_uses_env_store_path(self, tmp_path, monkeypatch, mock_embedder):
        monkeypatch.setenv("SMOLBRAIN_STORE_PATH", str(tmp_path / "env-store"))
        with Brain(embedding_provider=mock_embedder) as b:
            b.add("hello")
        assert (tmp_path / "env-store" / "smolbrain.db").exists()


class TestRegistry:

    def test_known_providers(self):
        names = get_registry().list_embedding_providers()
        assert "sentence-transformers" in names
        assert "openai" in names

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown embedding provider"):
            get_registry().create_embedding("nope")

    def test_unknown_provider_reported_by_brain(self, tmp_path):
        save_config(StoreConfig(path=tmp_path, embedding=ProviderConfig("nope")))
        with Brain(tmp_path) as b:
            with pytest.raises(EmbeddingProviderError, match="nope"):
                b.add("hello")
            assert b.count() == 0


class TestVectors:

    def test_normalize(self):
        v = normalize([3.0, 4.0])
        assert v.dtype == np.float32
        assert np.allclose(v, [0.6, 0.8])

    @pytest.mark.parametrize("bad", [[], [0.0, 0.0], [1.0, float("nan")]])
    def test_normalize_rejects(self, bad):
        with pytest.raises(EmbeddingProviderError):
            normalize(bad)

    def test_encode_decode(self):
        v = normalize([1.0, 2.0, 3.0])
        assert np.array_equal(decode(encode(v)), v)

    def test_rank_dimension_mismatch(self):
        query = normalize([1.0, 0.0])
        with pytest.raises(EmbeddingProviderError, match="reembed"):
            rank(query, [(1, encode(normalize([1.0, 0.0, 0.0])))])

    def test_rank_stable(self):
        query = normalize([1.0, 0.0])
        same = encode(normalize([1.0, 1.0]))
        result = rank(query, [(3, same), (5, same), (9, encode(normalize([1.0, 0.0])))])
        assert [id for id, _ in result] == [9, 3, 5]


class TestConfiguredProvider:

    def test_provider_from_config(self, tmp_path, mock_providers):
        save_config(StoreConfig(path=tmp_path, embedding=ProviderConfig("mock")))
        with Brain(tmp_path) as b:
            m = b.add("configured provider")
            assert m.embedding_model == "mock/mock-model"
            assert b.embedding_identity.dimension == 16

    def test_provider_params_passed(self, tmp_path, mock_providers):
        save_config(StoreConfig(
            path=tmp_path, embedding=ProviderConfig("mock", {"vectors": {"x": [1.0] * 16}}),
        ))
        with Brain(tmp_path) as b:
            assert b._get_embedder()._provider.vectors == {"x": [1.0] * 16}

    def test_listing_never_loads_provider(self, tmp_path, mock_providers, monkeypatch):
        save_config(StoreConfig(path=tmp_path, embedding=ProviderConfig("mock")))
        with Brain(tmp_path) as b:
            b.add("hello", ["a"])

        def explode(*args, **kwargs):
            raise AssertionError("provider constructed")

        monkeypatch.setattr(mock_providers, "create_embedding", explode)
        with Brain(tmp_path) as b:
            assert b.list_memories().total == 1
            assert b.find("hello").total == 1
            assert b.list_tasks().total == 0
            assert b.status_summary().total_memories == 1
            assert b.tag(1, "b") is True
