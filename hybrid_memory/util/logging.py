"""
Structured logging for store operations. Memory text and embeddings are
redacted from log details.
"""

import logging
import os
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['content', 'embedding', 'query', 'value']


class StructuredLogger:
    """Structured logger for memory store operations."""

    def __init__(self, name: str = "hybrid_memory"):
        self.logger = logging.getLogger(name)
        debug = os.getenv("DEBUG", "false").lower() == "true"
        self.logger.setLevel(logging.DEBUG if debug else logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None,
                      level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        self.logger.log(level, message)

    def log_memory_operation(self, operation: str, memory_id: str, details: Dict[str, Any] = None,
                             status: str = "success"):
        """Log a write/delete against the memories table."""
        log_details = {"memory_id": memory_id}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"memory.{operation}", status, log_details, level=level)

    def log_search(self, mode: str, result_count: int, duration_ms: float, details: Dict[str, Any] = None):
        """Log a search at debug level (searches are frequent)."""
        log_details = {"results": result_count, "duration_ms": round(duration_ms, 2)}
        if details:
            log_details.update(details)

        self.log_operation(f"search.{mode}", "success", log_details, level=logging.DEBUG)

    def log_migration(self, source: str, migrated: int, skipped: int, failed: int,
                      status: str = "success", details: Dict[str, Any] = None):
        """Log a legacy import run."""
        log_details = {
            "source": source,
            "migrated": migrated,
            "skipped": skipped,
            "failed": failed,
        }
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("migration.legacy_import", status, log_details, level=level)

    def log_maintenance(self, operation: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a maintenance operation (stats, export, import, clear, rebuild)."""
        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation(f"maintenance.{operation}", status, details, level=level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
