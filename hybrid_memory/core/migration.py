"""
One-time import of the legacy append-only memories.jsonl log.

Every line is one record {id, content, embedding?, metadata?, created_at?}.
Lines are inserted with INSERT OR IGNORE inside a single transaction, so a
re-run after a partial import neither duplicates rows nor fails. After at
least one row is imported the log is renamed, not deleted.
"""

import json
import os
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import MemoryExport
from .schema import MigrationReport
from ..vector.codec import encode_embedding, InvalidEmbeddingError
from ..util.logging import logger

INSERT_OR_IGNORE_SQL = '''
    INSERT OR IGNORE INTO memories (id, content, embedding, metadata, memory_type, created_at)
    VALUES (?, ?, ?, ?, ?, ?)
'''


def _record_row(record: MemoryExport, embedding_blob: Optional[bytes]) -> tuple:
    metadata = record.metadata.to_dict()
    created_at = (
        record.metadata.timestamp
        or record.created_at
        or datetime.now(timezone.utc).isoformat()
    )
    return (
        record.id,
        record.content,
        embedding_blob,
        json.dumps(metadata),
        record.metadata.type,
        created_at,
    )


def _encode_legacy_embedding(record: MemoryExport, expected_dim: Optional[int],
                             report: MigrationReport, line_no: int) -> Optional[bytes]:
    if record.embedding is None:
        return None
    blob = encode_embedding(record.embedding)
    if expected_dim is not None and len(record.embedding) != expected_dim:
        report.errors.append(
            f"line {line_no}: embedding dimension {len(record.embedding)} != {expected_dim}, stored without embedding"
        )
        return None
    return blob


def migrate_legacy_log(conn: sqlite3.Connection, legacy_path: str, *, rename: bool = True,
                       expected_dim: Optional[int] = None) -> MigrationReport:
    """
    Import the legacy JSONL log into the memories table.

    Args:
        conn: open store connection (schema already initialized)
        legacy_path: path to memories.jsonl
        rename: rename the log to <name>.migrated.<epoch-ms> after a successful import
        expected_dim: configured embedding dimension; mismatched vectors are dropped

    Returns:
        MigrationReport with migrated/skipped/failed counters
    """
    report = MigrationReport(source=str(legacy_path))
    path = Path(legacy_path)
    if not path.exists():
        return report

    try:
        text = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        report.errors.append(f"read failed: {e}")
        logger.log_migration(str(path), 0, 0, 0, status="failed", details={"error": str(e)})
        return report

    if not text:
        return report

    try:
        with conn:
            for line_no, line in enumerate(text.split("\n"), start=1):
                if not line.strip():
                    continue
                try:
                    record = MemoryExport.model_validate(json.loads(line))
                    blob = _encode_legacy_embedding(record, expected_dim, report, line_no)
                    cursor = conn.execute(INSERT_OR_IGNORE_SQL, _record_row(record, blob))
                except (json.JSONDecodeError, ValidationError, InvalidEmbeddingError) as e:
                    report.failed += 1
                    report.errors.append(f"line {line_no}: {e.__class__.__name__}: {str(e)[:200]}")
                    continue

                if cursor.rowcount > 0:
                    report.migrated += 1
                else:
                    report.skipped += 1
    except sqlite3.Error as e:
        # Transaction rolled back; nothing from this run is visible
        report.errors.append(f"database error: {e}")
        report.migrated = 0
        logger.log_migration(str(path), 0, report.skipped, report.failed, status="failed",
                             details={"error": str(e)})
        return report

    if report.migrated > 0 and rename:
        backup_path = f"{path}.migrated.{int(time.time() * 1000)}"
        try:
            os.replace(path, backup_path)
            report.backup_path = backup_path
        except OSError as e:
            report.errors.append(f"rename failed: {e}")

    if report.migrated or report.failed:
        logger.log_migration(
            str(path), report.migrated, report.skipped, report.failed,
            details={"backup_path": report.backup_path},
        )

    return report
