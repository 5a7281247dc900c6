"""
Maintenance operations: listing, delete, clear, stats, export/import,
keyword index rebuild and integrity checks.

These run inside long-lived processes, so engine failures are caught and
reported through result objects instead of raised. The only exception that
escapes is StoreNotInitializedError.
"""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .models import MemoryExport
from .schema import (
    DatabaseInfo,
    ImportReport,
    MemoryRecord,
    MemoryStats,
    OperationResult,
    SearchResult,
)
from .search_service import parse_metadata
from ..vector.codec import (
    InvalidEmbeddingError,
    decode_embedding,
    embedding_to_list,
    encode_embedding,
)
from ..util.logging import logger

UPSERT_SQL = '''
    INSERT INTO memories (id, content, embedding, metadata, memory_type, created_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET
        content = excluded.content,
        embedding = excluded.embedding,
        metadata = excluded.metadata,
        memory_type = excluded.memory_type,
        created_at = excluded.created_at
'''


def _listing(rows) -> List[SearchResult]:
    return [
        SearchResult(
            id=row["id"],
            content=row["content"],
            metadata=parse_metadata(row["metadata"]),
            score=1.0,
            timestamp=row["created_at"],
            match_type="listing",
        )
        for row in rows
    ]


def get_memory(store, memory_id: str) -> Optional[MemoryRecord]:
    """Fetch one record with its decoded embedding."""
    conn = store.require_connection()
    try:
        row = conn.execute('''
            SELECT id, content, embedding, metadata, memory_type, created_at
            FROM memories WHERE id = ?
        ''', (memory_id,)).fetchone()
    except sqlite3.Error as e:
        logger.error(f"Error reading memory {memory_id}: {e}")
        return None

    if row is None:
        return None

    try:
        embedding = decode_embedding(row["embedding"])
    except InvalidEmbeddingError as e:
        logger.warning(f"Memory {memory_id} has an undecodable embedding: {e}")
        embedding = None

    return MemoryRecord(
        id=row["id"],
        content=row["content"],
        embedding=embedding,
        metadata=parse_metadata(row["metadata"]),
        memory_type=row["memory_type"],
        created_at=row["created_at"],
    )


def get_memories_by_type(store, memory_type: str) -> List[SearchResult]:
    """All memories of one type, newest first."""
    conn = store.require_connection()
    try:
        rows = conn.execute('''
            SELECT id, content, metadata, created_at
            FROM memories
            WHERE memory_type = ?
            ORDER BY created_at DESC, rowid DESC
        ''', (memory_type,)).fetchall()
    except sqlite3.Error as e:
        logger.error(f"Error listing memories of type {memory_type}: {e}")
        return []
    return _listing(rows)


def get_all_memories(store, limit: int = 100, type: Optional[str] = None) -> List[SearchResult]:
    """Newest memories, optionally of one type. Score is fixed at 1.0."""
    conn = store.require_connection()
    sql = "SELECT id, content, metadata, created_at FROM memories"
    params: list = []
    if type:
        sql += " WHERE memory_type = ?"
        params.append(type)
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
    params.append(limit)

    try:
        rows = conn.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        logger.error(f"Error listing memories: {e}")
        return []
    return _listing(rows)


def delete_memory(store, memory_id: str) -> bool:
    """Delete one memory. False when the id is unknown or the delete failed."""
    conn = store.require_connection()
    try:
        with conn:
            cursor = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
    except sqlite3.Error as e:
        logger.log_memory_operation("delete", memory_id, {"error": str(e)}, status="failed")
        return False

    deleted = cursor.rowcount > 0
    if deleted:
        logger.log_memory_operation("delete", memory_id)
    return deleted


def clear_all_memories(store) -> OperationResult:
    conn = store.require_connection()
    try:
        with conn:
            cursor = conn.execute("DELETE FROM memories")
    except sqlite3.Error as e:
        logger.log_maintenance("clear", "failed", {"error": str(e)})
        return OperationResult(success=False, error=str(e))

    logger.log_maintenance("clear", "success", {"deleted": cursor.rowcount})
    return OperationResult(success=True, details={"deleted": cursor.rowcount})


def get_memory_stats(store) -> MemoryStats:
    """Total count, count per type, oldest and newest created_at."""
    conn = store.require_connection()
    stats = MemoryStats()

    try:
        stats.total_memories = conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]

        for row in conn.execute('''
            SELECT memory_type AS type, COUNT(*) AS count
            FROM memories
            GROUP BY memory_type
        '''):
            memory_type = row["type"] or "general"
            stats.by_type[memory_type] = stats.by_type.get(memory_type, 0) + row["count"]

        timestamps = conn.execute(
            "SELECT MIN(created_at) AS oldest, MAX(created_at) AS newest FROM memories"
        ).fetchone()
        stats.oldest_memory = timestamps["oldest"]
        stats.newest_memory = timestamps["newest"]
    except sqlite3.Error as e:
        logger.error(f"Error getting memory stats: {e}")

    return stats


def export_memories(store) -> List[Dict[str, Any]]:
    """
    Export every memory, oldest first, in the interchange format:
    {id, content, embedding: list[float] | None, metadata, created_at}.
    """
    conn = store.require_connection()
    try:
        rows = conn.execute('''
            SELECT id, content, embedding, metadata, created_at
            FROM memories
            ORDER BY created_at, rowid
        ''').fetchall()
    except sqlite3.Error as e:
        logger.log_maintenance("export", "failed", {"error": str(e)})
        return []

    exported = []
    for row in rows:
        try:
            embedding = embedding_to_list(decode_embedding(row["embedding"]))
        except InvalidEmbeddingError as e:
            logger.warning(f"Exporting memory {row['id']} without its undecodable embedding: {e}")
            embedding = None

        exported.append({
            "id": row["id"],
            "content": row["content"],
            "embedding": embedding,
            "metadata": parse_metadata(row["metadata"]),
            "created_at": row["created_at"],
        })

    logger.log_maintenance("export", "success", {"count": len(exported)})
    return exported


def _record_label(raw: Any, index: int) -> str:
    if isinstance(raw, dict) and raw.get("id"):
        return f"record {index} ({raw['id']})"
    return f"record {index}"


def import_memories(store, records: Iterable[Dict[str, Any]]) -> ImportReport:
    """
    Restore exported memories with replace-on-conflict semantics.

    Each record is validated on its own; invalid records are counted as failed
    and skipped. Valid records are written in one transaction, so either all
    of them land (with the keyword index updated) or none do.
    """
    conn = store.require_connection()
    report = ImportReport()
    rows = []

    try:
        items = list(records)
    except TypeError:
        report.failed = 1
        report.errors.append(f"records must be an iterable of dicts, got {type(records).__name__}")
        logger.log_maintenance("import", "failed", {"error": report.errors[0]})
        return report

    for index, raw in enumerate(items):
        try:
            record = MemoryExport.model_validate(raw)
            blob = encode_embedding(record.embedding)
            if blob is not None and len(blob) // 4 != store.embedding_dim:
                raise InvalidEmbeddingError(
                    f"embedding dimension {len(blob) // 4} != configured {store.embedding_dim}"
                )
        except (ValidationError, InvalidEmbeddingError) as e:
            report.failed += 1
            report.errors.append(f"{_record_label(raw, index)}: {str(e)[:200]}")
            continue

        rows.append((
            record.id,
            record.content,
            blob,
            json.dumps(record.metadata.to_dict()),
            record.metadata.type,
            record.created_at or datetime.now(timezone.utc).isoformat(),
        ))

    if rows:
        try:
            with conn:
                conn.executemany(UPSERT_SQL, rows)
            report.imported = len(rows)
        except sqlite3.Error as e:
            report.failed += len(rows)
            report.errors.append(f"database error, batch rolled back: {e}")

    status = "success" if report.imported or not report.failed else "failed"
    logger.log_maintenance("import", status, {"imported": report.imported, "failed": report.failed})
    return report


def rebuild_keyword_index(store) -> OperationResult:
    """Rebuild the FTS5 mirror from the memories table."""
    conn = store.require_connection()
    if not store.capabilities.fts5:
        return OperationResult(success=False, error="FTS5 unavailable")

    try:
        with conn:
            conn.execute("INSERT INTO memories_fts(memories_fts) VALUES ('rebuild')")
    except sqlite3.Error as e:
        logger.log_maintenance("rebuild_keyword_index", "failed", {"error": str(e)})
        return OperationResult(success=False, error=str(e))

    logger.log_maintenance("rebuild_keyword_index", "success")
    return OperationResult(success=True)


def check_integrity(store) -> OperationResult:
    """SQLite integrity check, plus an FTS5 index-vs-content check when available."""
    conn = store.require_connection()
    details: Dict[str, Any] = {}

    try:
        result = conn.execute("PRAGMA integrity_check").fetchone()[0]
        details["database"] = result
        if result != "ok":
            return OperationResult(success=False, error=f"integrity_check: {result}", details=details)

        if store.capabilities.fts5:
            with conn:
                conn.execute("INSERT INTO memories_fts(memories_fts, rank) VALUES ('integrity-check', 1)")
            details["keyword_index"] = "ok"
    except sqlite3.Error as e:
        logger.log_maintenance("integrity_check", "failed", {"error": str(e)})
        return OperationResult(success=False, error=str(e), details=details)

    logger.log_maintenance("integrity_check", "success", details)
    return OperationResult(success=True, details=details)


def get_database_info(store) -> DatabaseInfo:
    if not store.is_open:
        return DatabaseInfo(connected=False)

    conn = store.require_connection()
    try:
        page_count = conn.execute("PRAGMA page_count").fetchone()[0]
        page_size = conn.execute("PRAGMA page_size").fetchone()[0]
        memory_count = conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]
    except sqlite3.Error as e:
        return DatabaseInfo(connected=False, path=store.db_path, error=str(e))

    size = page_count * page_size
    return DatabaseInfo(
        connected=True,
        path=store.db_path,
        size=size,
        size_formatted=f"{size / 1024 / 1024:.2f} MB",
        memory_count=memory_count,
        capabilities=store.capabilities,
    )
