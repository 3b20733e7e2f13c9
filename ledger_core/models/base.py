"""
Ledger Core - Base Model

Every table carries a UUID key and audit timestamps. Tables that belong to
one company's books also carry the tenant/company pair used to scope
every repository query.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from ledger_core.database import LedgerBase


class LedgerRecord(LedgerBase):
    """Abstract table with UUID primary key and created/updated timestamps."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        code = getattr(self, "code", None) or getattr(self, "journal_number", None)
        if code:
            return f"<{self.__class__.__name__}({code}, id={self.id})>"
        return f"<{self.__class__.__name__}(id={self.id})>"


class CompanyScoped:
    """Indexed tenant_id/company_id columns for per-company books."""

    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
