"""
Ledger Core - Audit Event Sink

The core emits structured events (posting succeeded/failed, consolidation
run transitioned). Delivery and storage belong to the surrounding service.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from enum import Enum


class AuditEventType(str, Enum):
    POSTING_SUCCEEDED = "posting.succeeded"
    POSTING_FAILED = "posting.failed"
    PAYMENT_PROCESSED = "payment.processed"
    PAYMENT_FAILED = "payment.failed"
    ADVANCE_APPLIED = "advance.applied"
    CONSOLIDATION_RUN_TRANSITIONED = "consolidation.run_transitioned"


@dataclass
class AuditEvent:
    """Audit event data."""
    event_type: AuditEventType
    tenant_id: Optional[str] = None
    company_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "tenant_id": self.tenant_id,
            "company_id": self.company_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


class AuditSink(ABC):
    """Abstract base class for audit event sinks."""

    @abstractmethod
    async def emit(self, event: AuditEvent) -> None:
        """Deliver one audit event."""
        pass


class LoggingAuditSink(AuditSink):
    """Writes events as JSON to the ledger_core.audit logger."""

    def __init__(self, logger_name: str = "ledger_core.audit"):
        self.logger = logging.getLogger(logger_name)

    async def emit(self, event: AuditEvent) -> None:
        level = logging.WARNING if event.event_type in (
            AuditEventType.POSTING_FAILED,
            AuditEventType.PAYMENT_FAILED,
        ) else logging.INFO
        self.logger.log(level, json.dumps(event.to_dict(), default=str))


class InMemoryAuditSink(AuditSink):
    """Keeps events in a list. Used by tests and local tooling."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]
