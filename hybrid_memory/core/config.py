"""
Configuration for the hybrid memory store. Values come from the environment
(optionally a local .env file) and are read once at import time.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Storage locations
MEMORY_HOME = os.path.expanduser(os.getenv("MEMORY_HOME", "~/.hybrid-memory"))
DB_PATH = os.getenv("MEMORY_DB_PATH", os.path.join(MEMORY_HOME, "vector-memory.db"))
LEGACY_VECTOR_DIR = os.path.join(MEMORY_HOME, "vector-memory")
LEGACY_MEMORIES_FILE = os.getenv("LEGACY_MEMORIES_FILE", os.path.join(LEGACY_VECTOR_DIR, "memories.jsonl"))

# SQLite tuning
SQLITE_CACHE_SIZE = int(os.getenv("SQLITE_CACHE_SIZE", "10000"))

# Embedding collaborator
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|ollama|sentence-transformers
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_EMBED_MODEL = os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text")
EMBED_TIMEOUT_SEC = float(os.getenv("EMBED_TIMEOUT_SEC", "30"))
EMBED_MAX_RETRIES = int(os.getenv("EMBED_MAX_RETRIES", "3"))
EMBED_RETRY_DELAY_MS = int(os.getenv("EMBED_RETRY_DELAY_MS", "300"))
EMBED_MAX_RETRY_DELAY_MS = int(os.getenv("EMBED_MAX_RETRY_DELAY_MS", "5000"))
EMBED_CACHE_SIZE = int(os.getenv("EMBED_CACHE_SIZE", "500"))
EMBED_MAX_TEXT_LENGTH = int(os.getenv("EMBED_MAX_TEXT_LENGTH", "8000"))

VALID_EMBED_PROVIDERS = ["hash", "ollama", "sentence-transformers"]

# Record defaults
DEFAULT_MEMORY_TYPE = "general"
ID_LENGTH = 16

# Search defaults
VECTOR_SEARCH_LIMIT = 5
VECTOR_MIN_SCORE = 0.3
KEYWORD_SEARCH_LIMIT = 10
HYBRID_SEARCH_LIMIT = 5
HYBRID_MIN_SCORE = 0.2
HYBRID_VECTOR_MIN_SCORE = 0.1
HYBRID_OVERFETCH = 2
DEFAULT_VECTOR_WEIGHT = 0.6
DEFAULT_KEYWORD_WEIGHT = 0.4

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_memory_home():
    """Ensure the per-user data directory exists."""
    Path(MEMORY_HOME).mkdir(parents=True, exist_ok=True)


def get_embedding_provider():
    """Build the configured embedding collaborator, wrapped with the hash fallback."""
    from ..vector.embeddings import (
        FallbackEmbeddingProvider,
        OllamaEmbedding,
        SentenceTransformerEmbedding,
    )

    primary = None
    if EMBED_PROVIDER == "ollama":
        primary = OllamaEmbedding(
            model=OLLAMA_EMBED_MODEL,
            host=OLLAMA_HOST,
            timeout=EMBED_TIMEOUT_SEC,
            dimension=EMBED_DIM,
        )
    elif EMBED_PROVIDER == "sentence-transformers":
        primary = SentenceTransformerEmbedding(EMBED_MODEL_NAME)

    return FallbackEmbeddingProvider(
        primary=primary,
        dimension=EMBED_DIM,
        max_retries=EMBED_MAX_RETRIES,
        retry_delay_ms=EMBED_RETRY_DELAY_MS,
        max_retry_delay_ms=EMBED_MAX_RETRY_DELAY_MS,
        cache_size=EMBED_CACHE_SIZE,
        max_text_length=EMBED_MAX_TEXT_LENGTH,
    )


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if EMBED_PROVIDER not in VALID_EMBED_PROVIDERS:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if EMBED_MAX_RETRIES < 1:
        issues.append("EMBED_MAX_RETRIES must be >= 1")

    if EMBED_CACHE_SIZE < 0:
        issues.append("EMBED_CACHE_SIZE must be >= 0")

    if SQLITE_CACHE_SIZE == 0:
        issues.append("SQLITE_CACHE_SIZE must be non-zero")

    if not (0 <= DEFAULT_VECTOR_WEIGHT and 0 <= DEFAULT_KEYWORD_WEIGHT):
        issues.append("Hybrid weights must be non-negative")

    return issues
