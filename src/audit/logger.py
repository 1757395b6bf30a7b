"""
Audit Logger

DESIGN DECISION: Every remote write and every degraded read is logged.
This provides:
1. Traceability of what changed remote state
2. Debugging capability when cached data looks wrong
3. A record of how often the backend could not serve a query

The audit logger:
- Is synchronous (it only writes structured logs, it never suspends)
- Gracefully handles failures (doesn't crash the app if logging fails)
"""

import logging
from typing import Any, Optional

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the stdlib root logger at ``level``."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))


class AuditLogger:
    """
    Central audit logging service for the data layer.

    Events are written as structured JSON logs. Severity on the event
    decides the log level.
    """

    def __init__(self, logger: Optional[Any] = None):
        self._logger = logger or structlog.get_logger("src.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the log call itself failed.
        """
        log_dict = event.to_log_dict()
        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception:
            # Logging must never break a read or a write
            return False
        return True

    def log_records_created(self, owner_id: str, domain: Any, count: int) -> None:
        self.log(AuditEventBuilder.records_created(owner_id, domain, count))

    def log_record_updated(
        self,
        owner_id: str,
        domain: Any,
        record_id: str,
        fields: list[str],
    ) -> None:
        self.log(AuditEventBuilder.record_updated(owner_id, domain, record_id, fields))

    def log_record_deleted(self, owner_id: str, domain: Any, record_id: str) -> None:
        self.log(AuditEventBuilder.record_deleted(owner_id, domain, record_id))

    def log_records_deleted(
        self,
        owner_id: str,
        domain: Any,
        count: int,
        wholesale: bool = False,
    ) -> None:
        self.log(AuditEventBuilder.records_deleted(owner_id, domain, count, wholesale))

    def log_counter_incremented(
        self,
        owner_id: str,
        domain: Any,
        record_id: str,
        field: str,
        delta: float,
        new_value: Optional[float],
    ) -> None:
        self.log(AuditEventBuilder.counter_incremented(
            owner_id, domain, record_id, field, delta, new_value,
        ))

    def log_settings_saved(self, owner_id: str, name: str, fields: list[str]) -> None:
        self.log(AuditEventBuilder.settings_saved(owner_id, name, fields))

    def log_write_failed(
        self,
        owner_id: str,
        domain: Any,
        operation: str,
        error: Exception,
        details: Optional[dict] = None,
    ) -> None:
        self.log(AuditEventBuilder.write_failed(owner_id, domain, operation, error, details))

    def log_validation_failed(self, operation: str, message: str) -> None:
        self.log(AuditEventBuilder.validation_failed(operation, message))

    def log_cache_invalidated(self, owner_id: str, domain: Any, removed: int) -> None:
        self.log(AuditEventBuilder.cache_invalidated(owner_id, domain, removed))

    def log_cache_patched(self, owner_id: str, domain: Any, patched: int) -> None:
        self.log(AuditEventBuilder.cache_patched(owner_id, domain, patched))

    def log_cache_reset(self, owner_id: Optional[str], removed: int) -> None:
        self.log(AuditEventBuilder.cache_reset(owner_id, removed))

    def log_query_executed(
        self,
        owner_id: str,
        domain: Any,
        result_count: int,
        from_cache: bool,
    ) -> None:
        self.log(AuditEventBuilder.query_executed(owner_id, domain, result_count, from_cache))

    def log_query_fallback(self, owner_id: str, domain: Any, reason: str) -> None:
        self.log(AuditEventBuilder.query_fallback(owner_id, domain, reason))

    def log_query_failed(
        self,
        owner_id: str,
        domain: Any,
        error: Exception,
        served_stale: bool,
    ) -> None:
        self.log(AuditEventBuilder.query_failed(owner_id, domain, error, served_stale))
