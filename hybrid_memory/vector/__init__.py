"""
Vector layer: embedding codec, cosine similarity and embedding providers.
Stored vectors live in the memories table; nothing here holds state on disk.
"""

from .codec import EMBEDDING_DTYPE, InvalidEmbeddingError, encode_embedding, decode_embedding, embedding_to_list
from .similarity import cosine_similarity, cosine_scores
from .embeddings import (
    EmbeddingProviderError,
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    SentenceTransformerEmbedding,
    OllamaEmbedding,
    FallbackEmbeddingProvider,
)

__all__ = [
    'EMBEDDING_DTYPE',
    'InvalidEmbeddingError',
    'encode_embedding',
    'decode_embedding',
    'embedding_to_list',
    'cosine_similarity',
    'cosine_scores',
    'EmbeddingProviderError',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'OllamaEmbedding',
    'FallbackEmbeddingProvider'
]
