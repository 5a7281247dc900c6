"""
Shared fixtures: a memory store on a temporary database with the
deterministic hash embedding, so no test touches ~/.hybrid-memory.
"""

import os

import pytest

os.environ["DEBUG"] = "false"
os.environ["EMBED_PROVIDER"] = "hash"

from hybrid_memory.core.store import MemoryStore
from hybrid_memory.vector.embeddings import DeterministicHashEmbedding


@pytest.fixture
def embedder():
    return DeterministicHashEmbedding(dimension=384)


@pytest.fixture
def make_store(tmp_path, embedder):
    """Factory for opened stores; every store it creates is closed afterwards."""
    stores = []

    def _make(name="memory.db", provider=None, **kwargs):
        kwargs.setdefault("legacy_path", str(tmp_path / "vector-memory" / "memories.jsonl"))
        store = MemoryStore(
            db_path=str(tmp_path / name),
            embedding_provider=provider or embedder,
            **kwargs,
        )
        store.open()
        stores.append(store)
        return store

    yield _make

    for store in stores:
        store.close()


@pytest.fixture
def store(make_store):
    return make_store()
