"""
Record and report types returned by the memory store.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass
class Capabilities:
    """Optional SQLite features detected at startup."""
    json1: bool = False
    fts5: bool = False


@dataclass
class MemoryRecord:
    id: str
    content: str
    embedding: Optional[np.ndarray]
    metadata: Dict[str, Any]
    memory_type: str
    created_at: str


@dataclass
class SearchResult:
    """Ephemeral search hit. `score` depends on the search mode."""
    id: str
    content: str
    metadata: Dict[str, Any]
    score: float
    timestamp: str
    vector_score: Optional[float] = None
    keyword_score: Optional[float] = None
    match_type: str = "vector"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OperationResult:
    success: bool
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": self.success}
        if self.error is not None:
            data["error"] = self.error
        data.update(self.details)
        return data


@dataclass
class MigrationReport:
    """Outcome of a legacy log import: one counter per item disposition."""
    source: str
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    backup_path: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImportReport:
    imported: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        return data


@dataclass
class MemoryStats:
    total_memories: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    oldest_memory: Optional[str] = None
    newest_memory: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DatabaseInfo:
    connected: bool
    path: Optional[str] = None
    size: int = 0
    size_formatted: str = "0.00 MB"
    memory_count: int = 0
    capabilities: Optional[Capabilities] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
