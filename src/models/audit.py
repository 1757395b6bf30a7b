"""
Audit Models for the ExpenseSight data layer

Every remote write, cache invalidation and degraded read is recorded as an
AuditEvent. This provides:
1. Traceability of what changed remote state and when
2. Debugging information when the cache and the store disagree
3. Visibility into how often queries fall back or degrade

DESIGN DECISION: Audit events are append-only and local (structured logs).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Writes
    RECORDS_CREATED = "records_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    RECORDS_DELETED = "records_deleted"
    COUNTER_INCREMENTED = "counter_incremented"
    SETTINGS_SAVED = "settings_saved"
    WRITE_FAILED = "write_failed"
    VALIDATION_FAILED = "validation_failed"

    # Cache
    CACHE_INVALIDATED = "cache_invalidated"
    CACHE_PATCHED = "cache_patched"
    CACHE_RESET = "cache_reset"

    # Reads
    QUERY_EXECUTED = "query_executed"
    QUERY_FALLBACK = "query_fallback"
    QUERY_FAILED = "query_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every remote write and every degraded read creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - whose data and which domain
    owner_id: Optional[str] = Field(
        default=None,
        description="Owner whose namespace was touched"
    )
    domain: Optional[str] = Field(
        default=None,
        description="Record domain (expenses, goals, ...)"
    )
    record_id: Optional[str] = Field(
        default=None,
        description="Record this event relates to, if exactly one"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "domain": self.domain,
            "record_id": self.record_id,
            "description": self.description,
            "details": self.details,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


def _domain_value(domain: Any) -> Optional[str]:
    if domain is None:
        return None
    return getattr(domain, "value", str(domain))


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.records_created(owner, domain, count=3)
        event = AuditEventBuilder.query_fallback(owner, domain, reason)
    """

    @staticmethod
    def records_created(owner_id: str, domain: Any, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORDS_CREATED,
            owner_id=owner_id,
            domain=_domain_value(domain),
            description=f"Created {count} record(s)",
            details={"count": count},
        )

    @staticmethod
    def record_updated(
        owner_id: str,
        domain: Any,
        record_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            owner_id=owner_id,
            domain=_domain_value(domain),
            record_id=record_id,
            description=f"Updated record {record_id}",
            details={"fields": sorted(fields)},
        )

    @staticmethod
    def record_deleted(owner_id: str, domain: Any, record_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            owner_id=owner_id,
            domain=_domain_value(domain),
            record_id=record_id,
            description=f"Deleted record {record_id}",
        )

    @staticmethod
    def records_deleted(owner_id: str, domain: Any, count: int, wholesale: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORDS_DELETED,
            severity=AuditSeverity.WARNING if wholesale else AuditSeverity.INFO,
            owner_id=owner_id,
            domain=_domain_value(domain),
            description=(
                f"Deleted all {count} record(s)" if wholesale
                else f"Deleted {count} record(s)"
            ),
            details={"count": count, "wholesale": wholesale},
        )

    @staticmethod
    def counter_incremented(
        owner_id: str,
        domain: Any,
        record_id: str,
        field: str,
        delta: float,
        new_value: Optional[float],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COUNTER_INCREMENTED,
            owner_id=owner_id,
            domain=_domain_value(domain),
            record_id=record_id,
            description=f"Incremented {field} by {delta}",
            details={"field": field, "delta": delta, "new_value": new_value},
        )

    @staticmethod
    def settings_saved(owner_id: str, name: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_SAVED,
            owner_id=owner_id,
            record_id=name,
            description=f"Saved {name} settings",
            details={"fields": sorted(fields)},
        )

    @staticmethod
    def write_failed(
        owner_id: str,
        domain: Any,
        operation: str,
        error: Exception,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            domain=_domain_value(domain),
            description=f"Write failed: {operation}",
            details=details or {},
            error_type=type(error).__name__,
            error_message=str(error),
        )

    @staticmethod
    def validation_failed(operation: str, message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            description=f"Rejected {operation} before any remote call",
            error_message=message,
        )

    @staticmethod
    def cache_invalidated(owner_id: str, domain: Any, removed: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_INVALIDATED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            domain=_domain_value(domain),
            description=f"Invalidated {removed} cache entries",
            details={"removed": removed},
        )

    @staticmethod
    def cache_patched(owner_id: str, domain: Any, patched: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_PATCHED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            domain=_domain_value(domain),
            description=f"Patched {patched} cache entries in place",
            details={"patched": patched},
        )

    @staticmethod
    def cache_reset(owner_id: Optional[str], removed: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_RESET,
            owner_id=owner_id,
            description=(
                f"Reset cache for owner ({removed} entries)" if owner_id
                else f"Reset entire cache ({removed} entries)"
            ),
            details={"removed": removed},
        )

    @staticmethod
    def query_executed(
        owner_id: str,
        domain: Any,
        result_count: int,
        from_cache: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            domain=_domain_value(domain),
            description="Served query from cache" if from_cache else "Executed remote query",
            details={"result_count": result_count, "from_cache": from_cache},
        )

    @staticmethod
    def query_fallback(owner_id: str, domain: Any, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_FALLBACK,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            domain=_domain_value(domain),
            description="Filtered query not servable, retrying unfiltered",
            error_message=reason,
        )

    @staticmethod
    def query_failed(
        owner_id: str,
        domain: Any,
        error: Exception,
        served_stale: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            domain=_domain_value(domain),
            description=(
                "Query failed, served stale cache" if served_stale
                else "Query failed, served empty result"
            ),
            details={"served_stale": served_stale},
            error_type=type(error).__name__,
            error_message=str(error),
        )
