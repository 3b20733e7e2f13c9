"""
Ledger Core - Consolidation Models

Entity groups, intercompany transactions, elimination entries and
consolidation runs. Run results are stored as JSON so a finished run can
be read back without recomputation.
"""

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    JSON, UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ledger_core.models.base import LedgerRecord


class EntityGroup(LedgerRecord):
    """
    Parent-subsidiary relationships for consolidation
    """
    __tablename__ = "entity_groups"
    
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    reporting_currency = Column(String(3), nullable=False)
    parent_company_id = Column(UUID(as_uuid=True), nullable=True)
    
    members = relationship("EntityGroupMember", back_populates="group", cascade="all, delete-orphan")


class EntityGroupMember(LedgerRecord):
    """
    Members of an entity group for consolidation
    
    Currency translation fields:
    - functional_currency: The currency of the primary economic environment
    - closing_rate / average_rate / historical_rate: functional -> reporting
    - data_available_through: last date the member's books are complete for
    """
    __tablename__ = "entity_group_members"
    
    group_id = Column(UUID(as_uuid=True), ForeignKey("entity_groups.id", ondelete="CASCADE"), nullable=False)
    company_id = Column(UUID(as_uuid=True), nullable=False)
    name = Column(String(255), nullable=False)
    
    ownership_percentage = Column(Numeric(5, 2), default=100.00, nullable=False)
    consolidation_method = Column(String(20), default="full", nullable=False)  # full, proportional, equity
    control_type = Column(String(20), default="subsidiary", nullable=False)
    
    functional_currency = Column(String(3), nullable=False)
    translation_method = Column(String(20), default="current_rate", nullable=False)
    closing_rate = Column(Numeric(18, 6), nullable=True, comment="Balance sheet rate at period end")
    average_rate = Column(Numeric(18, 6), nullable=True, comment="Average rate for income statement translation")
    historical_rate = Column(Numeric(18, 6), nullable=True, comment="Historical rate for equity items")
    data_available_through = Column(Date, nullable=True)
    
    group = relationship("EntityGroup", back_populates="members")
    
    __table_args__ = (
        UniqueConstraint('group_id', 'company_id', name='uq_group_member'),
    )


class IntercompanyTransaction(LedgerRecord):
    """
    Tracks inter-company transactions for elimination during consolidation
    """
    __tablename__ = "intercompany_transactions"
    
    group_id = Column(UUID(as_uuid=True), ForeignKey("entity_groups.id"), nullable=False, index=True)
    source_entity_id = Column(UUID(as_uuid=True), nullable=False)
    counterparty_entity_id = Column(UUID(as_uuid=True), nullable=False)
    
    transaction_type = Column(String(20), nullable=False)  # sale, receivable, loan, dividend, investment
    transaction_date = Column(Date, nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    counterparty_amount = Column(Numeric(18, 2), nullable=True, comment="Amount confirmed by the counterparty")
    reference = Column(String(100), nullable=True)
    
    __table_args__ = (
        Index('ix_ict_group_date', 'group_id', 'transaction_date'),
    )


class EliminationEntryRecord(LedgerRecord):
    """
    Consolidation elimination, automatic (from a run) or manual.
    Manual entries take part in a run only once approved.
    """
    __tablename__ = "consolidation_eliminations"
    
    group_id = Column(UUID(as_uuid=True), ForeignKey("entity_groups.id"), nullable=False, index=True)
    period_end = Column(Date, nullable=False)
    elimination_type = Column(String(40), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    debit_account_code = Column(String(20), nullable=False)
    credit_account_code = Column(String(20), nullable=False)
    source_entity_ids = Column(JSON, default=list, nullable=False)
    intercompany_transaction_ids = Column(JSON, default=list, nullable=False)
    is_automatic = Column(Boolean, default=False, nullable=False)
    approval_status = Column(String(20), default="draft", nullable=False)
    description = Column(Text, nullable=True)
    run_id = Column(UUID(as_uuid=True), ForeignKey("consolidation_runs.id", ondelete="SET NULL"), nullable=True)


class ConsolidationRunRecord(LedgerRecord):
    """
    One consolidation run: Pending -> Running -> Completed | Failed.
    """
    __tablename__ = "consolidation_runs"
    
    group_id = Column(UUID(as_uuid=True), ForeignKey("entity_groups.id"), nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    
    progress_percentage = Column(Integer, default=0, nullable=False)
    entities_processed = Column(Integer, default=0, nullable=False)
    accounts_processed = Column(Integer, default=0, nullable=False)
    eliminations_created = Column(Integer, default=0, nullable=False)
    total_amount_consolidated = Column(Numeric(18, 2), default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    error_details = Column(JSON, default=list, nullable=False)
    data_completeness = Column(Numeric(5, 4), default=0, nullable=False)
    
    requested_by_id = Column(UUID(as_uuid=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
    
    __table_args__ = (
        Index('ix_consolidation_run_group_period', 'group_id', 'period_end', 'status'),
    )
