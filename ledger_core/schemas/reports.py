"""
Ledger Core - Financial Report Schemas

Trial balance, balance sheet, profit & loss and cash flow statement.
Balances in rows are signed in the account's natural direction unless the
field name says debit/credit.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ledger_core.schemas.accounting import AccountSubType, AccountType, CashFlowCategory


# =============================================================================
# FILTERS
# =============================================================================

class DimensionFilter(BaseModel):
    """Restrict reports to lines tagged with these dimension values."""
    cost_center: Optional[str] = None
    department: Optional[str] = None
    branch: Optional[str] = None
    territory: Optional[str] = None
    project: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        return {key: value for key, value in self.model_dump().items() if value is not None}


class TrialBalanceOptions(BaseModel):
    period_start: Optional[date] = None
    include_zero_balances: bool = False
    account_types: Optional[List[AccountType]] = None
    account_code_from: Optional[str] = None
    account_code_to: Optional[str] = None
    dimensions: Optional[DimensionFilter] = None


# =============================================================================
# TRIAL BALANCE
# =============================================================================

class TrialBalanceRow(BaseModel):
    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    account_sub_type: Optional[AccountSubType] = None
    opening_debit: Decimal = Decimal("0.00")
    opening_credit: Decimal = Decimal("0.00")
    period_debit: Decimal = Decimal("0.00")
    period_credit: Decimal = Decimal("0.00")
    closing_debit: Decimal = Decimal("0.00")
    closing_credit: Decimal = Decimal("0.00")

    @property
    def closing_balance(self) -> Decimal:
        """Debit-positive closing balance."""
        return self.closing_debit - self.closing_credit


class TrialBalanceReport(BaseModel):
    tenant_id: UUID
    company_id: UUID
    as_of_date: date
    period_start: date
    rows: List[TrialBalanceRow]
    total_debits: Decimal
    total_credits: Decimal
    difference: Decimal
    is_balanced: bool
    totals_by_type: Dict[str, Decimal] = Field(default_factory=dict)
    accounts_with_activity: int = 0


# =============================================================================
# BALANCE SHEET
# =============================================================================

class StatementLine(BaseModel):
    account_id: Optional[UUID] = None
    account_code: Optional[str] = None
    account_name: str
    account_sub_type: Optional[AccountSubType] = None
    amount: Decimal


class StatementSection(BaseModel):
    title: str
    lines: List[StatementLine] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")


class BalanceSheetReport(BaseModel):
    tenant_id: UUID
    company_id: UUID
    as_of_date: date
    current_assets: StatementSection
    non_current_assets: StatementSection
    current_liabilities: StatementSection
    non_current_liabilities: StatementSection
    equity: StatementSection
    current_period_earnings: Decimal
    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal
    difference: Decimal
    is_balanced: bool


# =============================================================================
# PROFIT & LOSS
# =============================================================================

class ProfitLossReport(BaseModel):
    tenant_id: UUID
    company_id: UUID
    start_date: date
    end_date: date
    revenue: StatementSection
    cost_of_sales: StatementSection
    gross_profit: Decimal
    operating_expenses: StatementSection
    operating_income: Decimal
    other_income: StatementSection
    other_expenses: StatementSection
    net_income: Decimal


# =============================================================================
# CASH FLOW STATEMENT
# =============================================================================

class CashFlowItem(BaseModel):
    description: str
    amount: Decimal
    category: CashFlowCategory
    account_id: Optional[UUID] = None


class CashFlowStatementReport(BaseModel):
    """Cash flow statement report (indirect method)."""
    tenant_id: UUID
    company_id: UUID
    start_date: date
    end_date: date

    # Operating Activities
    net_income: Decimal
    depreciation: Decimal
    changes_in_working_capital: List[CashFlowItem]
    operating_activities_total: Decimal

    # Investing Activities
    investing_items: List[CashFlowItem]
    investing_activities_total: Decimal

    # Financing Activities
    financing_items: List[CashFlowItem]
    financing_activities_total: Decimal

    # Summary
    net_change_in_cash: Decimal
    beginning_cash: Decimal
    ending_cash: Decimal
    actual_change_in_cash: Decimal
    difference: Decimal
    is_reconciled: bool
