"""
SQLite connection setup, capability probes and schema management for the
memories table and its FTS5 mirror.
"""

import sqlite3
from pathlib import Path

from .config import SQLITE_CACHE_SIZE, DEFAULT_MEMORY_TYPE
from .schema import Capabilities
from ..util.logging import logger


class StoreNotInitializedError(RuntimeError):
    """Raised when an operation runs before the store has been opened."""

    def __init__(self, message: str = "Memory store not initialized. Call MemoryStore.open() first."):
        super().__init__(message)


def connect(db_path: str) -> sqlite3.Connection:
    """Open a connection tuned for one writer and concurrent readers."""
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row

    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA cache_size = {int(SQLITE_CACHE_SIZE)}")
    conn.execute("PRAGMA temp_store = MEMORY")
    return conn


def has_json_support(conn: sqlite3.Connection) -> bool:
    """Test if JSON functions are available in SQLite."""
    try:
        conn.execute("SELECT json_extract('{}', '$.test')").fetchone()
        return True
    except sqlite3.Error:
        return False


def has_fts5_support(conn: sqlite3.Connection) -> bool:
    """Test if the FTS5 module is compiled in."""
    try:
        conn.execute("CREATE VIRTUAL TABLE IF NOT EXISTS temp.fts5_probe USING fts5(x)")
        conn.execute("DROP TABLE IF EXISTS temp.fts5_probe")
        return True
    except sqlite3.Error:
        return False


def detect_capabilities(conn: sqlite3.Connection) -> Capabilities:
    capabilities = Capabilities(json1=has_json_support(conn), fts5=has_fts5_support(conn))
    if not capabilities.json1:
        logger.warning("SQLite JSON1 functions unavailable; memory_type backfill disabled")
    if not capabilities.fts5:
        logger.warning("SQLite FTS5 unavailable; keyword search will return no results")
    return capabilities


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?", (name,)
    ).fetchone()
    return row is not None


def has_memory_type_column(conn: sqlite3.Connection) -> bool:
    """Check if memory_type column exists."""
    columns = [row[1] for row in conn.execute("PRAGMA table_info(memories)").fetchall()]
    return 'memory_type' in columns


def _add_memory_type_column(conn: sqlite3.Connection, capabilities: Capabilities):
    """Upgrade a database created before memory_type was denormalized."""
    logger.info("Adding memory_type column to memories table")
    conn.execute(f"ALTER TABLE memories ADD COLUMN memory_type TEXT DEFAULT '{DEFAULT_MEMORY_TYPE}'")

    if not capabilities.json1:
        logger.warning("Could not migrate memory types from JSON metadata; existing rows keep the default type")
        return

    try:
        cursor = conn.execute('''
            UPDATE memories
            SET memory_type = COALESCE(NULLIF(json_extract(metadata, '$.type'), ''), ?)
            WHERE json_valid(metadata)
        ''', (DEFAULT_MEMORY_TYPE,))
        logger.log_maintenance("backfill_memory_type", "success", {"rows": cursor.rowcount})
    except sqlite3.Error as e:
        logger.warning(f"Could not migrate memory types from JSON metadata: {e}")


def _create_fts(conn: sqlite3.Connection):
    """Create the FTS5 mirror and the triggers keeping it in sync with memories."""
    existed = _table_exists(conn, "memories_fts")

    conn.execute('''
        CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
            content,
            content='memories',
            content_rowid='rowid',
            tokenize='porter unicode61'
        )
    ''')

    conn.execute('''
        CREATE TRIGGER IF NOT EXISTS memories_fts_insert AFTER INSERT ON memories BEGIN
            INSERT INTO memories_fts(rowid, content) VALUES (new.rowid, new.content);
        END
    ''')

    conn.execute('''
        CREATE TRIGGER IF NOT EXISTS memories_fts_delete AFTER DELETE ON memories BEGIN
            INSERT INTO memories_fts(memories_fts, rowid, content) VALUES ('delete', old.rowid, old.content);
        END
    ''')

    conn.execute('''
        CREATE TRIGGER IF NOT EXISTS memories_fts_update AFTER UPDATE ON memories BEGIN
            INSERT INTO memories_fts(memories_fts, rowid, content) VALUES ('delete', old.rowid, old.content);
            INSERT INTO memories_fts(rowid, content) VALUES (new.rowid, new.content);
        END
    ''')

    if not existed:
        # Index rows written before FTS existed (older database or engine upgrade)
        count = conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]
        if count:
            conn.execute("INSERT INTO memories_fts(memories_fts) VALUES ('rebuild')")
            logger.log_maintenance("rebuild_keyword_index", "success", {"rows": count, "reason": "fts_created"})


def init_db(conn: sqlite3.Connection, capabilities: Capabilities) -> Capabilities:
    """
    Initialize the database with required tables. Safe to call on every start.

    All DDL, the memory_type upgrade and its backfill run in one transaction;
    sqlite3 does not open one implicitly before DDL, so BEGIN is explicit.
    """
    with conn:
        if not conn.in_transaction:
            conn.execute("BEGIN")
        conn.execute(f'''
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                embedding BLOB,
                metadata TEXT DEFAULT '{{}}',
                memory_type TEXT DEFAULT '{DEFAULT_MEMORY_TYPE}',
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        if not has_memory_type_column(conn):
            _add_memory_type_column(conn, capabilities)

        conn.execute('CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories(created_at)')
        conn.execute('CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(memory_type)')

        if capabilities.json1:
            try:
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_memories_metadata_type "
                    "ON memories(json_extract(metadata, '$.type'))"
                )
            except sqlite3.Error as e:
                logger.warning(f"Could not create JSON index, falling back to memory_type column: {e}")

        if capabilities.fts5:
            _create_fts(conn)

    return capabilities


def health_check(conn: sqlite3.Connection) -> bool:
    """Check database health."""
    try:
        return _table_exists(conn, "memories")
    except sqlite3.Error:
        return False
