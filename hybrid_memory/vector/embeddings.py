"""
Embedding providers. The store consumes them through FallbackEmbeddingProvider,
which never raises for the caller and degrades to a deterministic hash vector
of the same dimension when the primary backend is unavailable.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
import hashlib
import random
import re
import time
from typing import Any, Dict, List, Optional

import numpy as np
import ollama

from ..util.logging import logger


class EmbeddingProviderError(RuntimeError):
    """Raised by a primary provider when it cannot produce an embedding."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass

    @property
    def name(self) -> str:
        return self.__class__.__name__


_WORD_RE = re.compile(r"\w+", re.UNICODE)


def _fold_token(word: str) -> str:
    # Plural folding so "mountains" and "mountain" share a bucket
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider.

    Each distinct word is hashed (sha256) into two dimensions, weighted by its
    frequency (1.0 and 0.5), and the result is L2-normalized. Texts sharing
    words get positive cosine similarity, unrelated texts score near zero.
    Not semantic, but stable across processes and hosts.
    """

    def __init__(self, dimension: int = 384):
        if dimension < 1:
            raise ValueError("dimension must be >= 1")
        self.dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using hash function."""
        vector = np.zeros(self.dimension, dtype=np.float64)

        frequencies: Dict[str, int] = {}
        for word in _WORD_RE.findall(text.lower()):
            token = _fold_token(word)
            frequencies[token] = frequencies.get(token, 0) + 1

        for token, freq in frequencies.items():
            hex_dig = hashlib.sha256(token.encode("utf-8")).hexdigest()
            primary = int(hex_dig[0:4], 16) % self.dimension
            spread = int(hex_dig[4:8], 16) % self.dimension
            vector[primary] += freq
            vector[spread] += freq * 0.5

        magnitude = np.linalg.norm(vector)
        if magnitude > 0:
            vector /= magnitude

        return vector.astype(np.float32).tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise EmbeddingProviderError(
                    "sentence-transformers not installed. Install hybrid-memory[transformers].",
                    retryable=False,
                ) from e
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False)
        return embedding.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class OllamaEmbedding(IEmbeddingProvider):
    """Embeddings from a local Ollama server."""

    def __init__(self, model: str = "nomic-embed-text", host: Optional[str] = None,
                 timeout: float = 30.0, dimension: int = 384):
        self.model_name = model
        self.dimension = dimension
        self._client = ollama.Client(host=host, timeout=timeout)

    def embed_text(self, text: str) -> list[float]:
        try:
            response = self._client.embeddings(model=self.model_name, prompt=text)
        except ConnectionError as e:
            # Server down, retrying will not help
            raise EmbeddingProviderError(f"Ollama unreachable: {e}", retryable=False) from e
        except Exception as e:
            raise EmbeddingProviderError(f"Ollama embedding failed: {e}") from e

        embedding = response["embedding"] if response is not None else None
        if not embedding or not isinstance(embedding, (list, tuple)):
            raise EmbeddingProviderError("Invalid embedding response from Ollama")
        return [float(x) for x in embedding]

    def get_dimension(self) -> int:
        return self.dimension


class FallbackEmbeddingProvider(IEmbeddingProvider):
    """
    Embedding collaborator used by the memory store.

    Truncates long text, serves repeated texts from an LRU cache, retries the
    primary provider with exponential backoff and jitter, and falls back to a
    DeterministicHashEmbedding of the same dimension. A primary result with the
    wrong dimension is treated as a failure.
    """

    def __init__(
        self,
        primary: Optional[IEmbeddingProvider] = None,
        fallback: Optional[IEmbeddingProvider] = None,
        dimension: Optional[int] = None,
        max_retries: int = 3,
        retry_delay_ms: int = 300,
        max_retry_delay_ms: int = 5000,
        cache_size: int = 500,
        max_text_length: int = 8000,
    ):
        if dimension is None:
            dimension = primary.get_dimension() if primary is not None else 384
        self.primary = primary
        self.fallback = fallback or DeterministicHashEmbedding(dimension)
        self.dimension = dimension
        self.max_retries = max(1, max_retries)
        self.retry_delay_ms = retry_delay_ms
        self.max_retry_delay_ms = max_retry_delay_ms
        self.cache_size = cache_size
        self.max_text_length = max_text_length

        self._cache: "OrderedDict[str, list[float]]" = OrderedDict()
        self.fallback_count = 0
        self.last_error: Optional[str] = None

    def _cache_key(self, text: str) -> str:
        digest = hashlib.md5(text.encode("utf-8")).hexdigest()[:16]
        provider = self.primary.name if self.primary is not None else "fallback"
        return f"{provider}:{digest}"

    def _call_primary(self, text: str) -> list[float]:
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                embedding = self.primary.embed_text(text)
                if len(embedding) != self.dimension:
                    raise EmbeddingProviderError(
                        f"{self.primary.name} returned dimension {len(embedding)}, expected {self.dimension}",
                        retryable=False,
                    )
                return embedding
            except Exception as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                if isinstance(e, EmbeddingProviderError) and not e.retryable:
                    break

                base_delay = self.retry_delay_ms * (2 ** (attempt - 1))
                delay = min(base_delay * (1 + random.random() * 0.2), self.max_retry_delay_ms)
                time.sleep(delay / 1000.0)

        raise last_error

    def embed_text(self, text: str) -> list[float]:
        if not isinstance(text, str):
            raise TypeError("Text must be a string")

        truncated = text[:self.max_text_length]
        key = self._cache_key(truncated)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        embedding = None
        if self.primary is not None:
            try:
                embedding = self._call_primary(truncated)
            except Exception as e:
                self.fallback_count += 1
                self.last_error = str(e)
                logger.warning(f"[Embeddings] {self.primary.name} failed, using fallback: {e}")

        if embedding is None:
            embedding = self.fallback.embed_text(truncated)

        self._cache[key] = embedding
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

        return embedding

    def embed_texts(self, texts: List[str]) -> List[list[float]]:
        """Embed a batch of texts, one at a time."""
        return [self.embed_text(text) for text in texts]

    def get_dimension(self) -> int:
        return self.dimension

    def status(self) -> Dict[str, Any]:
        return {
            "primary": self.primary.name if self.primary is not None else None,
            "fallback": self.fallback.name,
            "dimension": self.dimension,
            "fallback_count": self.fallback_count,
            "last_error": self.last_error,
            "cache_size": len(self._cache),
        }

    def clear_cache(self) -> None:
        self._cache.clear()
