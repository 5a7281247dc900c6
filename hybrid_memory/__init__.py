"""
Hybrid memory store: SQLite persistence with exhaustive vector search,
FTS5 keyword search and weighted hybrid ranking.
"""

from .core.config import VERSION
from .core.db import StoreNotInitializedError
from .core.schema import (
    Capabilities,
    DatabaseInfo,
    ImportReport,
    MemoryRecord,
    MemoryStats,
    MigrationReport,
    OperationResult,
    SearchResult,
)
from .core.store import MemoryStore, generate_memory_id
from .vector.codec import InvalidEmbeddingError

__version__ = VERSION

__all__ = [
    'MemoryStore',
    'generate_memory_id',
    'StoreNotInitializedError',
    'InvalidEmbeddingError',
    'Capabilities',
    'DatabaseInfo',
    'ImportReport',
    'MemoryRecord',
    'MemoryStats',
    'MigrationReport',
    'OperationResult',
    'SearchResult'
]
