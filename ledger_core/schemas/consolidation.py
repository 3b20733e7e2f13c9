"""
Ledger Core - Consolidation Schemas

Groups, participating entities, intercompany transactions, elimination
entries, consolidated trial balances and run records.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from ledger_core.schemas.accounting import AccountType


# =============================================================================
# ENUMS
# =============================================================================

class ConsolidationMethod(str, Enum):
    """Consolidation methods per IFRS 10/11/28"""
    FULL = "full"  # >50% ownership - subsidiaries
    PROPORTIONAL = "proportional"  # Joint ventures
    EQUITY = "equity"  # 20-50% ownership - associates


class TranslationMethod(str, Enum):
    CURRENT_RATE = "current_rate"
    TEMPORAL = "temporal"
    HISTORICAL = "historical"


class ControlType(str, Enum):
    PARENT = "parent"
    SUBSIDIARY = "subsidiary"
    JOINT_VENTURE = "joint_venture"
    ASSOCIATE = "associate"


class EliminationType(str, Enum):
    """Types of elimination entries"""
    INTERCOMPANY_SALES = "intercompany_sales"
    INTERCOMPANY_RECEIVABLES = "intercompany_receivables"
    INTERCOMPANY_PAYABLES = "intercompany_payables"
    INTERCOMPANY_LOAN = "intercompany_loan"
    INTERCOMPANY_DIVIDEND = "intercompany_dividend"
    INVESTMENT_ELIMINATION = "investment_elimination"


class IntercompanyTransactionType(str, Enum):
    SALE = "sale"
    RECEIVABLE = "receivable"
    LOAN = "loan"
    DIVIDEND = "dividend"
    INVESTMENT = "investment"


class ApprovalStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Legal state machine transitions
RUN_TRANSITIONS: Dict[RunStatus, set] = {
    RunStatus.PENDING: {RunStatus.RUNNING},
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
}


# =============================================================================
# GROUP STRUCTURE
# =============================================================================

class ConsolidationGroup(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID
    name: str
    reporting_currency: str
    parent_company_id: Optional[UUID] = None


class ConsolidationEntity(BaseModel):
    """A company participating in a consolidation group."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    company_id: UUID
    name: str
    ownership_percentage: Decimal = Decimal("100")
    consolidation_method: ConsolidationMethod = ConsolidationMethod.FULL
    control_type: ControlType = ControlType.SUBSIDIARY
    functional_currency: str
    translation_method: TranslationMethod = TranslationMethod.CURRENT_RATE
    closing_rate: Optional[Decimal] = None
    average_rate: Optional[Decimal] = None
    historical_rate: Optional[Decimal] = None
    data_available_through: Optional[date] = None

    @property
    def is_parent(self) -> bool:
        return self.control_type == ControlType.PARENT


class IntercompanyTransaction(BaseModel):
    """
    One intercompany balance or flow, recorded by the source entity and
    confirmed by the counterparty. Amounts are in the group reporting currency.
    """
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    source_entity_id: UUID
    counterparty_entity_id: UUID
    transaction_type: IntercompanyTransactionType
    transaction_date: date
    amount: Decimal
    counterparty_amount: Optional[Decimal] = None
    reference: Optional[str] = None


class EliminationEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    period_end: date
    elimination_type: EliminationType
    amount: Decimal
    debit_account_code: str
    credit_account_code: str
    source_entity_ids: List[UUID] = Field(default_factory=list)
    intercompany_transaction_ids: List[UUID] = Field(default_factory=list)
    is_automatic: bool = False
    approval_status: ApprovalStatus = ApprovalStatus.DRAFT
    description: Optional[str] = None
    run_id: Optional[UUID] = None


# =============================================================================
# CONSOLIDATED OUTPUT
# =============================================================================

class ConsolidatedTrialBalanceRow(BaseModel):
    account_code: str
    account_name: str
    account_type: AccountType
    pre_elimination_debit: Decimal = Decimal("0.00")
    pre_elimination_credit: Decimal = Decimal("0.00")
    elimination_debit: Decimal = Decimal("0.00")
    elimination_credit: Decimal = Decimal("0.00")
    post_elimination_balance: Decimal = Decimal("0.00")  # debit-positive
    contributing_entities: List[UUID] = Field(default_factory=list)


class EntityContribution(BaseModel):
    entity_id: UUID
    company_id: UUID
    consolidation_method: ConsolidationMethod
    ownership_percentage: Decimal
    functional_currency: str
    translation_rate: Optional[Decimal] = None
    translation_adjustment: Decimal = Decimal("0.00")
    amount: Decimal = Decimal("0.00")
    contribution_percentage: Decimal = Decimal("0.00")


class MinorityInterest(BaseModel):
    entity_id: UUID
    minority_percentage: Decimal
    equity_share: Decimal
    income_share: Decimal


class ConsolidatedTrialBalance(BaseModel):
    group_id: UUID
    period_end: date
    reporting_currency: str
    rows: List[ConsolidatedTrialBalanceRow]
    contributions: List[EntityContribution] = Field(default_factory=list)
    eliminations: List[EliminationEntry] = Field(default_factory=list)
    minority_interests: List[MinorityInterest] = Field(default_factory=list)
    minority_interest_total: Decimal = Decimal("0.00")
    cta_total: Decimal = Decimal("0.00")
    unmatched_intercompany: List[UUID] = Field(default_factory=list)
    total_debits: Decimal = Decimal("0.00")
    total_credits: Decimal = Decimal("0.00")
    is_balanced: bool = True


class ConsolidationRun(BaseModel):
    """Job record. Progress is monotonic while Running."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    period_start: date
    period_end: date
    status: RunStatus = RunStatus.PENDING
    progress_percentage: int = 0
    entities_processed: int = 0
    accounts_processed: int = 0
    eliminations_created: int = 0
    total_amount_consolidated: Decimal = Decimal("0.00")
    error_count: int = 0
    error_details: List[Dict[str, Any]] = Field(default_factory=list)
    data_completeness: Decimal = Decimal("0.00")
    requested_by_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    result: Optional[ConsolidatedTrialBalance] = None
