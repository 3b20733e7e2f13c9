"""
Ledger Core - Accounting Schemas

Pydantic schemas for the chart of accounts, journals, parties and the
advance/prepayment sub-ledger.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from ledger_core.utils.error_handling import ErrorCode


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class AccountSubType(str, Enum):
    # Asset sub-types
    CASH = "cash"
    BANK = "bank"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    INVENTORY = "inventory"
    PREPAID_EXPENSE = "prepaid_expense"
    SUPPLIER_PREPAYMENT = "supplier_prepayment"
    WHT_RECEIVABLE = "wht_receivable"
    INTERCOMPANY_RECEIVABLE = "intercompany_receivable"
    INVESTMENT = "investment"
    FIXED_ASSET = "fixed_asset"
    ACCUMULATED_DEPRECIATION = "accumulated_depreciation"
    OTHER_CURRENT_ASSET = "other_current_asset"
    OTHER_NON_CURRENT_ASSET = "other_non_current_asset"

    # Liability sub-types
    ACCOUNTS_PAYABLE = "accounts_payable"
    ACCRUED_EXPENSE = "accrued_expense"
    CUSTOMER_ADVANCE = "customer_advance"
    WHT_PAYABLE = "wht_payable"
    INTERCOMPANY_PAYABLE = "intercompany_payable"
    LOAN = "loan"
    OTHER_CURRENT_LIABILITY = "other_current_liability"
    OTHER_NON_CURRENT_LIABILITY = "other_non_current_liability"

    # Equity sub-types
    SHARE_CAPITAL = "share_capital"
    RETAINED_EARNINGS = "retained_earnings"
    TRANSLATION_RESERVE = "translation_reserve"
    NON_CONTROLLING_INTEREST = "non_controlling_interest"
    OTHER_EQUITY = "other_equity"

    # Revenue sub-types
    SALES_REVENUE = "sales_revenue"
    SERVICE_REVENUE = "service_revenue"
    INTEREST_INCOME = "interest_income"
    OTHER_INCOME = "other_income"

    # Expense sub-types
    COST_OF_GOODS_SOLD = "cost_of_goods_sold"
    OPERATING_EXPENSE = "operating_expense"
    DEPRECIATION_EXPENSE = "depreciation_expense"
    BANK_CHARGES = "bank_charges"
    FX_GAIN_LOSS = "fx_gain_loss"
    TAX_EXPENSE = "tax_expense"
    OTHER_EXPENSE = "other_expense"


class NormalBalance(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class CashFlowCategory(str, Enum):
    OPERATING = "operating"
    INVESTING = "investing"
    FINANCING = "financing"


class PartyType(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class VoucherType(str, Enum):
    JOURNAL = "journal"
    PAYMENT = "payment"
    RECEIPT = "receipt"
    ADVANCE = "advance"
    REVERSAL = "reversal"
    ADJUSTMENT = "adjustment"
    ELIMINATION = "elimination"


DEFAULT_NORMAL_BALANCE: Dict[AccountType, NormalBalance] = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class Account(BaseModel):
    """A node in the chart-of-accounts tree."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID
    company_id: UUID
    code: str = Field(..., min_length=1, max_length=20)
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    sub_type: Optional[AccountSubType] = None
    parent_id: Optional[UUID] = None
    is_active: bool = True
    is_header: bool = False
    currency: str = "MYR"
    cash_flow_category: Optional[CashFlowCategory] = None

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT


class Party(BaseModel):
    """Customer or supplier as seen by the ledger."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID
    company_id: UUID
    party_type: PartyType
    name: str
    currency: Optional[str] = None
    is_active: bool = True


class BankAccount(BaseModel):
    """Settlement bank account linked to a GL account."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID
    company_id: UUID
    name: str
    currency: str
    gl_account_id: UUID
    is_active: bool = True


# =============================================================================
# JOURNALS
# =============================================================================

class JournalLine(BaseModel):
    """One posting line. Exactly one of debit/credit is non-zero."""
    model_config = ConfigDict(from_attributes=True)

    account_id: UUID
    debit: Decimal = Decimal("0.00")
    credit: Decimal = Decimal("0.00")
    description: Optional[str] = None
    reference: Optional[str] = None

    # Accounting dimensions
    cost_center: Optional[str] = None
    department: Optional[str] = None
    branch: Optional[str] = None
    territory: Optional[str] = None
    project: Optional[str] = None


class Journal(BaseModel):
    """Journal header and ordered lines."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID
    company_id: UUID
    posting_date: date
    currency: str
    journal_number: str
    description: Optional[str] = None
    voucher_type: VoucherType = VoucherType.JOURNAL
    lines: List[JournalLine] = Field(default_factory=list)

    # Source document currency information (lines are always in `currency`)
    source_currency: Optional[str] = None
    exchange_rate: Decimal = Decimal("1")
    source_reference: Optional[str] = None
    reversal_of_id: Optional[UUID] = None
    posted_at: Optional[datetime] = None
    posted_by_id: Optional[UUID] = None

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))


class PostedLine(BaseModel):
    """A committed journal line joined with its header, as read back for reporting."""
    model_config = ConfigDict(from_attributes=True)

    journal_id: UUID
    journal_number: str
    posting_date: date
    voucher_type: VoucherType
    account_id: UUID
    debit: Decimal
    credit: Decimal
    description: Optional[str] = None
    reference: Optional[str] = None
    cost_center: Optional[str] = None
    department: Optional[str] = None
    branch: Optional[str] = None
    territory: Optional[str] = None
    project: Optional[str] = None


class PostingContext(BaseModel):
    """Who is posting, and where."""
    tenant_id: UUID
    company_id: UUID
    user_id: UUID
    role: str


class PostingAccepted(BaseModel):
    status: Literal["accepted"] = "accepted"
    journal: Journal
    total_debit: Decimal
    total_credit: Decimal
    requires_approval: bool = False
    approver_roles: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class PostingRejected(BaseModel):
    status: Literal["rejected"] = "rejected"
    code: ErrorCode
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


PostingResult = Annotated[Union[PostingAccepted, PostingRejected], Field(discriminator="status")]


# =============================================================================
# ADVANCE / PREPAYMENT SUB-LEDGER
# =============================================================================

class AdvanceKey(BaseModel):
    """Identity of an advance balance: (tenant, company, party type, party, currency)."""
    model_config = ConfigDict(frozen=True)

    tenant_id: UUID
    company_id: UUID
    party_type: PartyType
    party_id: UUID
    currency: str


class AdvanceAccountBalance(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: AdvanceKey
    account_id: UUID
    balance: Decimal = Decimal("0.00")
    updated_at: Optional[datetime] = None


class AdvanceBalanceChange(BaseModel):
    """Signed delta applied to an advance balance in the same commit as its journal."""
    key: AdvanceKey
    account_id: UUID
    delta: Decimal
