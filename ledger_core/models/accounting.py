"""
Ledger Core - Chart of Accounts & General Ledger Models

Tables behind the SQL ledger repository:
- Chart of accounts (tree per tenant/company)
- Customers/suppliers and settlement bank accounts
- Posted journal entries and their lines
- Advance / prepayment balances per party and currency

Only committed journals are stored here; validation happens before a row
is ever written.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String,
    Enum as SQLEnum, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_core.models.base import CompanyScoped, LedgerRecord
from ledger_core.schemas.accounting import (
    AccountSubType,
    AccountType,
    CashFlowCategory,
    NormalBalance,
    PartyType,
    VoucherType,
)


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class LedgerAccount(LedgerRecord, CompanyScoped):
    """
    Chart of Accounts node.

    Header accounts group children for reporting and never take postings.
    """
    
    __tablename__ = "ledger_accounts"
    
    # Account Identification
    code: Mapped[str] = mapped_column(
        String(20), nullable=False,
        comment="Account code unique per company (e.g., 1000, 1100, 2000)",
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    
    # Classification
    account_type: Mapped[AccountType] = mapped_column(
        SQLEnum(AccountType), nullable=False,
    )
    sub_type: Mapped[Optional[AccountSubType]] = mapped_column(
        SQLEnum(AccountSubType), nullable=True,
    )
    normal_balance: Mapped[NormalBalance] = mapped_column(
        SQLEnum(NormalBalance), nullable=False,
    )
    cash_flow_category: Mapped[Optional[CashFlowCategory]] = mapped_column(
        SQLEnum(CashFlowCategory), nullable=True,
        comment="Overrides the sub-type default in the cash flow statement",
    )
    
    # Hierarchy
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ledger_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_header: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
        comment="True if this is a header/parent account, not for posting",
    )
    
    currency: Mapped[str] = mapped_column(String(3), default="MYR", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'company_id', 'code', name='uq_ledger_account_company_code'),
        Index('ix_ledger_account_company_type', 'company_id', 'account_type'),
    )


# =============================================================================
# PARTIES & BANK ACCOUNTS
# =============================================================================

class PartyRecord(LedgerRecord, CompanyScoped):
    """Customer or supplier."""
    
    __tablename__ = "ledger_parties"
    
    party_type: Mapped[PartyType] = mapped_column(SQLEnum(PartyType), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class BankAccountRecord(LedgerRecord, CompanyScoped):
    """Settlement bank account linked to its GL account."""
    
    __tablename__ = "ledger_bank_accounts"
    
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    gl_account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ledger_accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# =============================================================================
# JOURNAL ENTRIES
# =============================================================================

class JournalEntry(LedgerRecord, CompanyScoped):
    """
    Posted journal header.

    Totals are stored for quick lookups; lines are the source of truth.
    """
    
    __tablename__ = "journal_entries"
    
    journal_number: Mapped[str] = mapped_column(String(50), nullable=False)
    posting_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    voucher_type: Mapped[VoucherType] = mapped_column(
        SQLEnum(VoucherType), default=VoucherType.JOURNAL, nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    
    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    
    # Currency (lines are in `currency`; source_* describe the document)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    source_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=6), default=Decimal("1"), nullable=False,
    )
    source_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    
    reversal_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("journal_entries.id", ondelete="SET NULL"),
        nullable=True,
    )
    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    posted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    
    lines: Mapped[List["JournalEntryLine"]] = relationship(
        "JournalEntryLine",
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        order_by="JournalEntryLine.line_number",
    )
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'company_id', 'journal_number', name='uq_journal_entry_number'),
        Index('ix_je_company_date', 'company_id', 'posting_date'),
    )


class JournalEntryLine(LedgerRecord):
    """
    Individual line item in a journal entry.
    Each line is either a debit or credit to a specific account.
    """
    
    __tablename__ = "journal_entry_lines"
    
    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ledger_accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    
    # Amount (one or the other, not both)
    debit: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    credit: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    
    # Dimensions (for multi-dimensional reporting)
    cost_center: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    branch: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    territory: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    project: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    
    journal_entry: Mapped["JournalEntry"] = relationship("JournalEntry", back_populates="lines")
    
    __table_args__ = (
        UniqueConstraint('journal_entry_id', 'line_number', name='uq_je_line_number'),
        CheckConstraint('debit >= 0 AND credit >= 0', name='non_negative_amounts'),
    )


# =============================================================================
# ADVANCE / PREPAYMENT SUB-LEDGER
# =============================================================================

class AdvanceBalanceRecord(LedgerRecord):
    """
    Running advance balance for one (tenant, company, party, currency).

    Rows are locked FOR UPDATE while a posting that touches them commits.
    """
    
    __tablename__ = "advance_balances"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    party_type: Mapped[PartyType] = mapped_column(SQLEnum(PartyType), nullable=False)
    party_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ledger_accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    
    __table_args__ = (
        UniqueConstraint(
            'tenant_id', 'company_id', 'party_type', 'party_id', 'currency',
            name='uq_advance_balance_key',
        ),
    )
