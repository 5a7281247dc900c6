"""
Pydantic models for memory metadata and the export/import interchange format.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_MEMORY_TYPE

METADATA_SCHEMA_VERSION = 1


class MemoryMetadata(BaseModel):
    """Well-known metadata fields plus an open extension map (extra keys are kept)."""
    model_config = ConfigDict(extra="allow")

    schema_version: int = METADATA_SCHEMA_VERSION
    timestamp: Optional[str] = None
    type: str = DEFAULT_MEMORY_TYPE
    # Provenance fields hold any JSON value, stored as given
    tags: Any = None
    source: Any = None
    key: Any = None
    context: Any = None
    project_name: Any = None

    @field_validator('type', mode='before')
    @classmethod
    def type_defaults_to_general(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_MEMORY_TYPE
        return v

    @property
    def extra_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def to_dict(self) -> Dict[str, Any]:
        """JSON object as stored on disk. Only fields that were set are emitted."""
        return self.model_dump(exclude_unset=True)


class MemoryExport(BaseModel):
    """One record of the export/import payload and of the legacy log."""
    model_config = ConfigDict(extra="ignore")

    id: str
    content: str
    embedding: Optional[List[float]] = None
    metadata: MemoryMetadata = Field(default_factory=MemoryMetadata)
    created_at: Optional[str] = None

    @field_validator('id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('id cannot be empty')
        return v

    @field_validator('content')
    @classmethod
    def content_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('content cannot be empty')
        return v

    @field_validator('embedding', mode='before')
    @classmethod
    def index_keyed_embedding_becomes_list(cls, v):
        # A serialized typed array arrives as {"0": x, "1": y, ...}
        if isinstance(v, dict) and v and all(isinstance(k, str) and k.isdigit() for k in v):
            return [v[k] for k in sorted(v, key=int)]
        return v

    @field_validator('metadata', mode='before')
    @classmethod
    def metadata_defaults_to_empty(cls, v):
        if v is None:
            return {}
        return v

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "embedding": self.embedding,
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at,
        }
