"""
Data Models Package

Pydantic models describing domains, read filters, write results and audit
events. Records themselves stay plain dictionaries with an ``id`` field.
"""

from src.models.records import (
    DEFAULT_NOTIFICATION_SETTINGS,
    DOMAIN_SPECS,
    ID_FIELD,
    PREDEFINED_TAGS,
    BillFrequency,
    Domain,
    DomainSpec,
    MutationResult,
    QueryFilters,
    Record,
    domain_spec,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "DEFAULT_NOTIFICATION_SETTINGS",
    "DOMAIN_SPECS",
    "ID_FIELD",
    "PREDEFINED_TAGS",
    "BillFrequency",
    "Domain",
    "DomainSpec",
    "MutationResult",
    "QueryFilters",
    "Record",
    "domain_spec",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
