"""
Tests for the embedding providers and the fallback collaborator.
"""

import sys
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from hybrid_memory.vector.embeddings import (
    DeterministicHashEmbedding,
    EmbeddingProviderError,
    FallbackEmbeddingProvider,
    IEmbeddingProvider,
    OllamaEmbedding,
    SentenceTransformerEmbedding,
)
from hybrid_memory.vector.similarity import cosine_similarity


class ScriptedProvider(IEmbeddingProvider):
    """Primary provider that replays a script of results and exceptions."""

    def __init__(self, script, dimension=8):
        self.script = list(script)
        self.dimension = dimension
        self.calls = []

    def embed_text(self, text):
        self.calls.append(text)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        return step

    def get_dimension(self):
        return self.dimension


def test_embedding_interface():
    """Test that the embedding provider implements the interface correctly."""
    embedder = DeterministicHashEmbedding(dimension=384)

    assert isinstance(embedder, IEmbeddingProvider)
    assert embedder.get_dimension() == 384


def test_deterministic_embedding():
    """Test that the same input always produces the same output."""
    embedder1 = DeterministicHashEmbedding(dimension=384)
    embedder2 = DeterministicHashEmbedding(dimension=384)

    vector1 = embedder1.embed_text("Hello, world!")
    vector2 = embedder2.embed_text("Hello, world!")

    assert vector1 == vector2
    assert len(vector1) == 384


def test_different_inputs_produce_different_vectors():
    embedder = DeterministicHashEmbedding(dimension=384)

    assert embedder.embed_text("Hello, world!") != embedder.embed_text("Goodbye, world!")


def test_hash_embedding_is_normalized():
    vector = np.array(DeterministicHashEmbedding(dimension=128).embed_text("some words here"))
    assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)


def test_embedding_edge_cases():
    embedder = DeterministicHashEmbedding(dimension=384)

    # No word characters: zero vector of the right dimension
    empty_vector = embedder.embed_text("")
    assert len(empty_vector) == 384
    assert all(v == 0.0 for v in empty_vector)

    assert len(embedder.embed_text("A" * 1000)) == 384
    assert len(embedder.embed_text("!@#$%^&*()")) == 384


def test_shared_words_score_higher_than_unrelated():
    embedder = DeterministicHashEmbedding(dimension=384)
    query = embedder.embed_text("hiking mountains")

    related = cosine_similarity(query, embedder.embed_text("Mountain trails are great for hiking"))
    unrelated = cosine_similarity(query, embedder.embed_text("Stock market closed higher today"))

    assert related > 0.4
    assert related > unrelated


def test_plural_folding():
    embedder = DeterministicHashEmbedding(dimension=384)

    assert embedder.embed_text("mountains") == embedder.embed_text("mountain")
    # "ss" endings are left alone
    assert embedder.embed_text("glass") != embedder.embed_text("glas")


def test_invalid_dimension():
    with pytest.raises(ValueError):
        DeterministicHashEmbedding(dimension=0)


class TestFallbackEmbeddingProvider:
    """Retry, fallback and caching behaviour of the store's collaborator."""

    def test_hash_only_when_no_primary(self):
        provider = FallbackEmbeddingProvider(dimension=64)

        vector = provider.embed_text("hello")

        assert vector == DeterministicHashEmbedding(64).embed_text("hello")
        assert provider.get_dimension() == 64
        assert provider.fallback_count == 0

    def test_uses_primary_when_healthy(self):
        primary = ScriptedProvider([[0.5] * 8])
        provider = FallbackEmbeddingProvider(primary=primary, retry_delay_ms=0)

        assert provider.embed_text("hello") == [0.5] * 8
        assert provider.get_dimension() == 8
        assert primary.calls == ["hello"]

    def test_retries_then_succeeds(self):
        primary = ScriptedProvider([
            EmbeddingProviderError("busy"),
            EmbeddingProviderError("busy"),
            [1.0] * 8,
        ])
        provider = FallbackEmbeddingProvider(primary=primary, max_retries=3, retry_delay_ms=0)

        assert provider.embed_text("hello") == [1.0] * 8
        assert len(primary.calls) == 3
        assert provider.fallback_count == 0

    def test_falls_back_after_retries(self):
        primary = ScriptedProvider([EmbeddingProviderError("down")])
        provider = FallbackEmbeddingProvider(primary=primary, max_retries=3, retry_delay_ms=0)

        vector = provider.embed_text("hello")

        assert vector == DeterministicHashEmbedding(8).embed_text("hello")
        assert len(primary.calls) == 3
        assert provider.fallback_count == 1
        assert "down" in provider.last_error

    def test_non_retryable_error_skips_retries(self):
        primary = ScriptedProvider([EmbeddingProviderError("refused", retryable=False)])
        provider = FallbackEmbeddingProvider(primary=primary, max_retries=5, retry_delay_ms=0)

        provider.embed_text("hello")

        assert len(primary.calls) == 1
        assert provider.fallback_count == 1

    def test_wrong_dimension_falls_back(self):
        primary = ScriptedProvider([[0.1] * 4], dimension=8)
        provider = FallbackEmbeddingProvider(primary=primary, retry_delay_ms=0)

        vector = provider.embed_text("hello")

        assert len(vector) == 8
        assert len(primary.calls) == 1
        assert provider.fallback_count == 1

    def test_backoff_sleeps_between_attempts(self):
        primary = ScriptedProvider([EmbeddingProviderError("busy")])
        provider = FallbackEmbeddingProvider(
            primary=primary, max_retries=3, retry_delay_ms=100, max_retry_delay_ms=150
        )

        with patch("hybrid_memory.vector.embeddings.time.sleep") as sleep:
            provider.embed_text("hello")

        delays = [c.args[0] for c in sleep.call_args_list]
        assert len(delays) == 2
        assert 0.1 <= delays[0] <= 0.12
        assert delays[1] == pytest.approx(0.15)

    def test_cache_hit_skips_primary(self):
        primary = ScriptedProvider([[0.2] * 8])
        provider = FallbackEmbeddingProvider(primary=primary, retry_delay_ms=0)

        first = provider.embed_text("same text")
        second = provider.embed_text("same text")

        assert first == second
        assert len(primary.calls) == 1

    def test_cache_is_lru_bounded(self):
        primary = ScriptedProvider([[0.2] * 8])
        provider = FallbackEmbeddingProvider(primary=primary, cache_size=2, retry_delay_ms=0)

        provider.embed_text("a")
        provider.embed_text("b")
        provider.embed_text("a")
        provider.embed_text("c")  # evicts "b"
        provider.embed_text("a")
        provider.embed_text("b")

        assert primary.calls == ["a", "b", "c", "b"]
        assert provider.status()["cache_size"] == 2

    def test_clear_cache(self):
        primary = ScriptedProvider([[0.2] * 8])
        provider = FallbackEmbeddingProvider(primary=primary, retry_delay_ms=0)

        provider.embed_text("a")
        provider.clear_cache()
        provider.embed_text("a")

        assert len(primary.calls) == 2

    def test_long_text_is_truncated(self):
        primary = ScriptedProvider([[0.2] * 8])
        provider = FallbackEmbeddingProvider(primary=primary, max_text_length=10, retry_delay_ms=0)

        provider.embed_text("x" * 50)

        assert primary.calls == ["x" * 10]

    def test_rejects_non_string(self):
        provider = FallbackEmbeddingProvider(dimension=8)
        with pytest.raises(TypeError):
            provider.embed_text(None)

    def test_embed_texts(self):
        provider = FallbackEmbeddingProvider(dimension=8)
        vectors = provider.embed_texts(["a", "b"])
        assert len(vectors) == 2
        assert all(len(v) == 8 for v in vectors)

    def test_status(self):
        primary = ScriptedProvider([EmbeddingProviderError("down", retryable=False)])
        provider = FallbackEmbeddingProvider(primary=primary, retry_delay_ms=0)
        provider.embed_text("hello")

        status = provider.status()

        assert status["primary"] == "ScriptedProvider"
        assert status["fallback"] == "DeterministicHashEmbedding"
        assert status["dimension"] == 8
        assert status["fallback_count"] == 1


class TestOllamaEmbedding:
    """Ollama client is mocked; no server is contacted."""

    @pytest.fixture
    def client(self):
        with patch("hybrid_memory.vector.embeddings.ollama.Client") as client_cls:
            yield client_cls.return_value

    def test_returns_embedding(self, client):
        client.embeddings.return_value = {"embedding": [0.1, 0.2, 0.3]}
        provider = OllamaEmbedding(model="nomic-embed-text", dimension=3)

        assert provider.embed_text("hello") == pytest.approx([0.1, 0.2, 0.3])
        client.embeddings.assert_called_once_with(model="nomic-embed-text", prompt="hello")

    def test_connection_refused_is_not_retryable(self, client):
        client.embeddings.side_effect = ConnectionError("refused")
        provider = OllamaEmbedding()

        with pytest.raises(EmbeddingProviderError) as exc_info:
            provider.embed_text("hello")
        assert exc_info.value.retryable is False

    def test_other_failures_are_retryable(self, client):
        client.embeddings.side_effect = RuntimeError("model loading")
        provider = OllamaEmbedding()

        with pytest.raises(EmbeddingProviderError) as exc_info:
            provider.embed_text("hello")
        assert exc_info.value.retryable is True

    def test_malformed_response(self, client):
        client.embeddings.return_value = {"embedding": []}
        provider = OllamaEmbedding()

        with pytest.raises(EmbeddingProviderError):
            provider.embed_text("hello")

    def test_fallback_wraps_unreachable_server(self, client):
        client.embeddings.side_effect = ConnectionError("refused")
        provider = FallbackEmbeddingProvider(primary=OllamaEmbedding(dimension=16), retry_delay_ms=0)

        vector = provider.embed_text("hello")

        assert len(vector) == 16
        assert client.embeddings.call_count == 1
        assert provider.fallback_count == 1


class TestSentenceTransformerEmbedding:

    def test_model_loaded_lazily(self):
        model = MagicMock()
        model.encode.return_value = np.array([0.1, 0.2], dtype=np.float32)
        model.get_sentence_embedding_dimension.return_value = 2
        module = MagicMock()
        module.SentenceTransformer.return_value = model

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            provider = SentenceTransformerEmbedding("tiny-model")
            module.SentenceTransformer.assert_not_called()

            assert provider.get_dimension() == 2
            assert provider.embed_text("hello") == pytest.approx([0.1, 0.2])
            module.SentenceTransformer.assert_called_once_with("tiny-model")

    def test_missing_package_is_not_retryable(self):
        with patch.dict(sys.modules, {"sentence_transformers": None}):
            provider = SentenceTransformerEmbedding()
            with pytest.raises(EmbeddingProviderError) as exc_info:
                provider.embed_text("hello")
        assert exc_info.value.retryable is False
