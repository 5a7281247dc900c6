"""
MemoryStore: the explicit handle owning the SQLite connection, the embedding
collaborator and the write path. Search and maintenance operations live in
search_service.py and maintenance.py and are exposed here as methods.
"""

import hashlib
import json
import secrets
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
from pydantic import ValidationError

from . import config
from . import maintenance
from . import search_service
from .db import StoreNotInitializedError, connect, detect_capabilities, init_db
from .migration import migrate_legacy_log
from .models import MemoryMetadata, METADATA_SCHEMA_VERSION
from .schema import (
    Capabilities,
    DatabaseInfo,
    ImportReport,
    MemoryRecord,
    MemoryStats,
    MigrationReport,
    OperationResult,
    SearchResult,
)
from ..vector.codec import InvalidEmbeddingError, decode_embedding, encode_embedding
from ..vector.embeddings import IEmbeddingProvider
from ..util.logging import logger


def generate_memory_id(content: str) -> str:
    """Content-plus-entropy digest, truncated."""
    seed = f"{content}{time.time_ns()}{secrets.token_hex(8)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:config.ID_LENGTH]


class MemoryStore:
    """
    Persistent hybrid memory store.

    Usage:
        with MemoryStore() as store:
            store.add_memory("I love hiking", {"type": "general"})
            store.hybrid_search("hiking")

    Args:
        db_path: database file (defaults to config.DB_PATH)
        embedding_provider: embedding collaborator (defaults to config.get_embedding_provider())
        embedding_dim: configured dimension; defaults to the provider's dimension
        legacy_path: legacy JSONL log (defaults to config.LEGACY_MEMORIES_FILE)
        migrate_legacy: import the legacy log on open()
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        embedding_provider: Optional[IEmbeddingProvider] = None,
        *,
        embedding_dim: Optional[int] = None,
        legacy_path: Optional[str] = None,
        migrate_legacy: bool = True,
    ):
        self.db_path = str(db_path or config.DB_PATH)
        self.embedding_provider = embedding_provider or config.get_embedding_provider()
        self.embedding_dim = embedding_dim or self.embedding_provider.get_dimension()
        self.legacy_path = str(legacy_path or config.LEGACY_MEMORIES_FILE)
        self.migrate_legacy = migrate_legacy

        self._conn: Optional[sqlite3.Connection] = None
        self._capabilities = Capabilities()
        self._last_timestamp: Optional[str] = None
        self.last_migration: Optional[MigrationReport] = None

    # Lifecycle

    def open(self) -> "MemoryStore":
        """Connect, create/upgrade the schema and import the legacy log. Idempotent."""
        if self._conn is not None:
            return self

        conn = connect(self.db_path)
        try:
            self._capabilities = detect_capabilities(conn)
            init_db(conn, self._capabilities)
        except Exception:
            conn.close()
            raise
        self._conn = conn

        if self.migrate_legacy:
            self.last_migration = migrate_legacy_log(
                conn, self.legacy_path, expected_dim=self.embedding_dim
            )

        logger.log_operation("store.open", "success", {
            "path": self.db_path,
            "fts5": self._capabilities.fts5,
            "json1": self._capabilities.json1,
            "embedding_dim": self.embedding_dim,
        })
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "MemoryStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    def require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreNotInitializedError()
        return self._conn

    # Embeddings

    def embed_for_storage(self, text: str) -> Optional[bytes]:
        """Embedding blob for a record, or None when no usable vector was produced."""
        try:
            embedding = self.embedding_provider.embed_text(text)
            blob = encode_embedding(embedding)
        except InvalidEmbeddingError as e:
            logger.warning(f"Discarding malformed embedding: {e}")
            return None
        except Exception as e:
            logger.warning(f"Embedding provider failed, continuing without embedding: {e}")
            return None

        if blob is None:
            return None
        dimension = len(blob) // 4
        if dimension != self.embedding_dim:
            logger.warning(f"Embedding dimension {dimension} != configured {self.embedding_dim}; discarded")
            return None
        return blob

    def embed_query(self, query: str) -> Optional[np.ndarray]:
        try:
            return decode_embedding(self.embed_for_storage(query))
        except InvalidEmbeddingError:
            return None

    # Write path

    def _next_timestamp(self) -> str:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="microseconds")
        # Wall clock may step backwards; created_at must not
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            timestamp = self._last_timestamp
        self._last_timestamp = timestamp
        return timestamp

    def add_memory(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Embed and persist one memory.

        Returns:
            {"id": <memory id>, "success": True}

        Raises:
            StoreNotInitializedError: store not opened
            ValueError: empty content or metadata that fails validation
            sqlite3.Error: the database itself failed
        """
        conn = self.require_connection()
        if not isinstance(content, str) or not content.strip():
            raise ValueError("content cannot be empty")

        metadata = dict(metadata or {})
        timestamp = self._next_timestamp()
        merged = {
            "schema_version": METADATA_SCHEMA_VERSION,
            **metadata,
            "timestamp": timestamp,
            "type": metadata.get("type") or config.DEFAULT_MEMORY_TYPE,
        }
        try:
            validated = MemoryMetadata.model_validate(merged)
        except ValidationError as e:
            raise ValueError(f"Invalid metadata: {e}") from e

        embedding_blob = self.embed_for_storage(content)
        memory_id = generate_memory_id(content)

        try:
            with conn:
                cursor = conn.execute('''
                    INSERT OR IGNORE INTO memories (id, content, embedding, metadata, memory_type, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (
                    memory_id,
                    content,
                    embedding_blob,
                    json.dumps(validated.to_dict()),
                    validated.type,
                    timestamp,
                ))
        except sqlite3.Error as e:
            logger.log_memory_operation("add", memory_id, {"error": str(e)}, status="failed")
            raise

        if cursor.rowcount == 0:
            logger.log_memory_operation("add", memory_id, {"reason": "duplicate id"}, status="ignored")
        else:
            logger.log_memory_operation("add", memory_id, {
                "type": validated.type,
                "embedded": embedding_blob is not None,
            })

        return {"id": memory_id, "success": True}

    # Search

    def search_memories(self, query: str, limit: int = config.VECTOR_SEARCH_LIMIT,
                        min_score: float = config.VECTOR_MIN_SCORE,
                        type: Optional[str] = None) -> List[SearchResult]:
        return search_service.vector_search(self, query, limit=limit, min_score=min_score, type=type)

    def keyword_search(self, query: str, limit: int = config.KEYWORD_SEARCH_LIMIT,
                       type: Optional[str] = None) -> List[SearchResult]:
        return search_service.keyword_search(self, query, limit=limit, type=type)

    def hybrid_search(self, query: str, limit: int = config.HYBRID_SEARCH_LIMIT,
                      min_score: float = config.HYBRID_MIN_SCORE, type: Optional[str] = None,
                      vector_weight: float = config.DEFAULT_VECTOR_WEIGHT,
                      keyword_weight: float = config.DEFAULT_KEYWORD_WEIGHT) -> List[SearchResult]:
        return search_service.hybrid_search(
            self, query, limit=limit, min_score=min_score, type=type,
            vector_weight=vector_weight, keyword_weight=keyword_weight,
        )

    # Maintenance

    def get_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        return maintenance.get_memory(self, memory_id)

    def get_memories_by_type(self, memory_type: str) -> List[SearchResult]:
        return maintenance.get_memories_by_type(self, memory_type)

    def get_all_memories(self, limit: int = 100, type: Optional[str] = None) -> List[SearchResult]:
        return maintenance.get_all_memories(self, limit=limit, type=type)

    def delete_memory(self, memory_id: str) -> bool:
        return maintenance.delete_memory(self, memory_id)

    def clear_all_memories(self) -> OperationResult:
        return maintenance.clear_all_memories(self)

    def get_memory_stats(self) -> MemoryStats:
        return maintenance.get_memory_stats(self)

    def export_memories(self) -> List[Dict[str, Any]]:
        return maintenance.export_memories(self)

    def import_memories(self, records: Iterable[Dict[str, Any]]) -> ImportReport:
        return maintenance.import_memories(self, records)

    def rebuild_keyword_index(self) -> OperationResult:
        return maintenance.rebuild_keyword_index(self)

    def check_integrity(self) -> OperationResult:
        return maintenance.check_integrity(self)

    def get_database_info(self) -> DatabaseInfo:
        return maintenance.get_database_info(self)

    # Convenience helpers

    def remember_preference(self, key: str, value: Any, context: str = "") -> Dict[str, Any]:
        """Store a user preference."""
        content = f"User preference: {key} = {value}. Context: {context}"
        return self.add_memory(content, {"type": "preference", "key": key, "context": context})

    def recall_preferences(self, query: str) -> List[SearchResult]:
        """Recall preferences related to a query."""
        return self.search_memories(query, limit=5, type="preference")

    def remember_project(self, project_name: str, details: Any) -> Dict[str, Any]:
        """Store project context."""
        content = f'Project "{project_name}": {json.dumps(details)}'
        return self.add_memory(content, {"type": "project", "project_name": project_name})

    def recall_projects(self, query: str) -> List[SearchResult]:
        """Search project memories."""
        return self.search_memories(query, limit=5, type="project")
