"""Structured logging for syndication monitoring."""

import json
import logging
from typing import Any, Dict, Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "elementa", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs) -> None:
        """
        Log structured event.

        Standard keys: event, connection_id, destination, sku, status,
                      batch_size, recovery_time, reason, error
        """
        log_data = {"event": event, **kwargs}
        self.logger.log(level, json.dumps(log_data, default=str))

    def debug(self, event: str, **kwargs) -> None:
        self.log(event, level=logging.DEBUG, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self.log(event, level=logging.WARNING, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self.log(event, level=logging.ERROR, **kwargs)

    def record_skipped(self, reason: str, source_identifier: Optional[str] = None, **kwargs) -> None:
        self.log("record_skipped", reason=reason, source_identifier=source_identifier, **kwargs)

    def syndication_success(self, connection_id: int, sku: str, created: bool) -> None:
        self.log("syndication_success", connection_id=connection_id, sku=sku, created=created)

    def syndication_failed(self, connection_id: int, sku: Optional[str], error: Dict[str, Any]) -> None:
        self.error("syndication_failed", connection_id=connection_id, sku=sku, error=error)

    def destination_distress(
        self, destination: str, status: Optional[int], timed_out: bool, elapsed_ms: Optional[float] = None
    ) -> None:
        self.warning("destination_distress", destination=destination, status=status,
                     timed_out=timed_out, elapsed_ms=elapsed_ms)

    def batch_size_reduced(self, destination: str, old_size: int, new_size: int) -> None:
        self.warning("batch_size_reduced", destination=destination, old_size=old_size, new_size=new_size)

    def recovery_wait(self, destination: str, recovery_time: float) -> None:
        self.warning("recovery_wait", destination=destination, recovery_time=recovery_time)

    def cleanup_batch(self, cleanup_run_id: int, batch_size: int, processed: int, errors: int) -> None:
        self.log("cleanup_batch", cleanup_run_id=cleanup_run_id, batch_size=batch_size,
                 processed=processed, errors=errors)

    def cleanup_status(self, cleanup_run_id: int, connection_id: int, status: str, **kwargs) -> None:
        self.log("cleanup_status", cleanup_run_id=cleanup_run_id, connection_id=connection_id,
                 status=status, **kwargs)

    def import_status(self, import_run_id: int, connection_id: int, status: str, **kwargs) -> None:
        self.log("import_status", import_run_id=import_run_id, connection_id=connection_id,
                 status=status, **kwargs)
