"""
Ledger Core - Financial Reports Service

Builds trial balance, balance sheet, profit & loss and cash flow statements
from committed journal lines. Reports are read-only. Balancing checks are
always reported and never corrected.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from ledger_core.config import Settings, settings as default_settings
from ledger_core.repositories.base import LedgerRepository
from ledger_core.schemas.accounting import (
    Account,
    AccountSubType,
    AccountType,
    CashFlowCategory,
    PostedLine,
)
from ledger_core.schemas.reports import (
    BalanceSheetReport,
    CashFlowItem,
    CashFlowStatementReport,
    DimensionFilter,
    ProfitLossReport,
    StatementLine,
    StatementSection,
    TrialBalanceOptions,
    TrialBalanceReport,
    TrialBalanceRow,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

CASH_SUB_TYPES = {AccountSubType.CASH, AccountSubType.BANK}

NON_CURRENT_ASSET_SUB_TYPES = {
    AccountSubType.FIXED_ASSET,
    AccountSubType.ACCUMULATED_DEPRECIATION,
    AccountSubType.INVESTMENT,
    AccountSubType.OTHER_NON_CURRENT_ASSET,
}

NON_CURRENT_LIABILITY_SUB_TYPES = {
    AccountSubType.LOAN,
    AccountSubType.OTHER_NON_CURRENT_LIABILITY,
}

INVESTING_SUB_TYPES = {
    AccountSubType.FIXED_ASSET,
    AccountSubType.INVESTMENT,
    AccountSubType.OTHER_NON_CURRENT_ASSET,
}

COST_OF_SALES_SUB_TYPES = {AccountSubType.COST_OF_GOODS_SOLD}
OTHER_INCOME_SUB_TYPES = {AccountSubType.INTEREST_INCOME, AccountSubType.OTHER_INCOME}
OTHER_EXPENSE_SUB_TYPES = {
    AccountSubType.OTHER_EXPENSE,
    AccountSubType.FX_GAIN_LOSS,
    AccountSubType.TAX_EXPENSE,
}

DEBIT_NATURE_TYPES = {AccountType.ASSET, AccountType.EXPENSE}


def natural_balance(account_type: AccountType, debit: Decimal, credit: Decimal) -> Decimal:
    """Balance signed in the direction the account type normally carries."""
    if account_type in DEBIT_NATURE_TYPES:
        return debit - credit
    return credit - debit


class ReportsService:
    """Service for generating financial reports."""

    def __init__(self, repository: LedgerRepository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or default_settings

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _matches(line: PostedLine, dimensions: Optional[DimensionFilter]) -> bool:
        if dimensions is None:
            return True
        for field, value in dimensions.as_dict().items():
            if getattr(line, field) != value:
                return False
        return True

    async def _movements(
        self,
        tenant_id: UUID,
        company_id: UUID,
        start_date: Optional[date],
        end_date: date,
        dimensions: Optional[DimensionFilter] = None,
    ) -> Dict[UUID, Tuple[Decimal, Decimal]]:
        """Gross (debit, credit) per account for lines in [start_date, end_date]."""
        totals: Dict[UUID, List[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        lines = await self.repository.list_posted_lines(tenant_id, company_id, start_date, end_date)
        for line in lines:
            if not self._matches(line, dimensions):
                continue
            totals[line.account_id][0] += line.debit
            totals[line.account_id][1] += line.credit
        return {account_id: (d, c) for account_id, (d, c) in totals.items()}

    async def _postable_accounts(self, tenant_id: UUID, company_id: UUID) -> List[Account]:
        accounts = await self.repository.list_accounts(tenant_id, company_id)
        return [a for a in accounts if not a.is_header]

    @staticmethod
    def _section(title: str, lines: Iterable[StatementLine]) -> StatementSection:
        lines = list(lines)
        return StatementSection(title=title, lines=lines, total=sum((l.amount for l in lines), ZERO))

    @staticmethod
    def _statement_line(account: Account, amount: Decimal) -> StatementLine:
        return StatementLine(
            account_id=account.id,
            account_code=account.code,
            account_name=account.name,
            account_sub_type=account.sub_type,
            amount=amount,
        )

    # =========================================================================
    # TRIAL BALANCE
    # =========================================================================

    async def generate_trial_balance(
        self,
        tenant_id: UUID,
        company_id: UUID,
        as_of_date: date,
        options: Optional[TrialBalanceOptions] = None,
    ) -> TrialBalanceReport:
        """
        Generate trial balance report.

        Opening figures cover everything before the period start (default:
        1 January of the as-of year); period figures cover the period up to
        and including as_of_date. `is_balanced` compares total closing debits
        and credits within the balance tolerance.
        """
        options = options or TrialBalanceOptions()
        period_start = options.period_start or date(as_of_date.year, 1, 1)

        accounts = await self._postable_accounts(tenant_id, company_id)
        known = {a.id for a in accounts}
        opening = await self._movements(
            tenant_id, company_id, None, period_start - timedelta(days=1), options.dimensions
        )
        period = await self._movements(tenant_id, company_id, period_start, as_of_date, options.dimensions)

        orphaned = (set(opening) | set(period)) - known
        if orphaned:
            logger.warning(f"Trial balance for {company_id}: {len(orphaned)} account(s) with lines are not in the chart")

        rows: List[TrialBalanceRow] = []
        totals_by_type: Dict[str, Decimal] = {t.value: ZERO for t in AccountType}
        accounts_with_activity = 0
        for account in accounts:
            if options.account_types and account.account_type not in options.account_types:
                continue
            if options.account_code_from and account.code < options.account_code_from:
                continue
            if options.account_code_to and account.code > options.account_code_to:
                continue

            opening_debit, opening_credit = opening.get(account.id, (ZERO, ZERO))
            period_debit, period_credit = period.get(account.id, (ZERO, ZERO))
            opening_net = opening_debit - opening_credit
            closing_net = opening_net + period_debit - period_credit
            has_activity = period_debit != 0 or period_credit != 0

            if not options.include_zero_balances and opening_net == 0 and not has_activity:
                continue
            if has_activity:
                accounts_with_activity += 1

            rows.append(TrialBalanceRow(
                account_id=account.id,
                account_code=account.code,
                account_name=account.name,
                account_type=account.account_type,
                account_sub_type=account.sub_type,
                opening_debit=opening_net if opening_net > 0 else ZERO,
                opening_credit=-opening_net if opening_net < 0 else ZERO,
                period_debit=period_debit,
                period_credit=period_credit,
                closing_debit=closing_net if closing_net > 0 else ZERO,
                closing_credit=-closing_net if closing_net < 0 else ZERO,
            ))
            totals_by_type[account.account_type.value] += natural_balance(
                account.account_type,
                closing_net if closing_net > 0 else ZERO,
                -closing_net if closing_net < 0 else ZERO,
            )

        total_debits = sum((r.closing_debit for r in rows), ZERO)
        total_credits = sum((r.closing_credit for r in rows), ZERO)
        difference = total_debits - total_credits
        is_balanced = abs(difference) <= self.settings.balance_tolerance
        if not is_balanced:
            logger.error(
                f"Trial balance for {company_id} as of {as_of_date} is out of balance by {difference}"
            )

        return TrialBalanceReport(
            tenant_id=tenant_id,
            company_id=company_id,
            as_of_date=as_of_date,
            period_start=period_start,
            rows=rows,
            total_debits=total_debits,
            total_credits=total_credits,
            difference=difference,
            is_balanced=is_balanced,
            totals_by_type=totals_by_type,
            accounts_with_activity=accounts_with_activity,
        )

    # =========================================================================
    # BALANCE SHEET
    # =========================================================================

    async def generate_balance_sheet(
        self,
        tenant_id: UUID,
        company_id: UUID,
        as_of_date: date,
        dimensions: Optional[DimensionFilter] = None,
    ) -> BalanceSheetReport:
        """
        Generate balance sheet report.

        Equity includes earnings not yet closed to retained earnings. The
        signed difference assets - (liabilities + equity) is always reported.
        """
        accounts = await self._postable_accounts(tenant_id, company_id)
        movements = await self._movements(tenant_id, company_id, None, as_of_date, dimensions)

        current_assets, non_current_assets = [], []
        current_liabilities, non_current_liabilities = [], []
        equity = []
        earnings = ZERO

        for account in accounts:
            debit, credit = movements.get(account.id, (ZERO, ZERO))
            balance = natural_balance(account.account_type, debit, credit)
            if account.account_type == AccountType.REVENUE:
                earnings += balance
                continue
            if account.account_type == AccountType.EXPENSE:
                earnings -= balance
                continue
            if balance == 0:
                continue

            line = self._statement_line(account, balance)
            if account.account_type == AccountType.ASSET:
                if account.sub_type in NON_CURRENT_ASSET_SUB_TYPES:
                    non_current_assets.append(line)
                else:
                    current_assets.append(line)
            elif account.account_type == AccountType.LIABILITY:
                if account.sub_type in NON_CURRENT_LIABILITY_SUB_TYPES:
                    non_current_liabilities.append(line)
                else:
                    current_liabilities.append(line)
            else:
                equity.append(line)

        if earnings != 0:
            equity.append(StatementLine(account_name="Current period earnings", amount=earnings))

        current_assets_section = self._section("Current Assets", current_assets)
        non_current_assets_section = self._section("Non-Current Assets", non_current_assets)
        current_liabilities_section = self._section("Current Liabilities", current_liabilities)
        non_current_liabilities_section = self._section("Non-Current Liabilities", non_current_liabilities)
        equity_section = self._section("Equity", equity)

        total_assets = current_assets_section.total + non_current_assets_section.total
        total_liabilities = current_liabilities_section.total + non_current_liabilities_section.total
        total_equity = equity_section.total
        difference = total_assets - (total_liabilities + total_equity)
        is_balanced = abs(difference) <= self.settings.balance_tolerance
        if not is_balanced:
            logger.error(
                f"Balance sheet for {company_id} as of {as_of_date} does not balance: difference {difference}"
            )

        return BalanceSheetReport(
            tenant_id=tenant_id,
            company_id=company_id,
            as_of_date=as_of_date,
            current_assets=current_assets_section,
            non_current_assets=non_current_assets_section,
            current_liabilities=current_liabilities_section,
            non_current_liabilities=non_current_liabilities_section,
            equity=equity_section,
            current_period_earnings=earnings,
            total_assets=total_assets,
            total_liabilities=total_liabilities,
            total_equity=total_equity,
            difference=difference,
            is_balanced=is_balanced,
        )

    # =========================================================================
    # PROFIT & LOSS
    # =========================================================================

    async def generate_profit_loss(
        self,
        tenant_id: UUID,
        company_id: UUID,
        start_date: date,
        end_date: date,
        dimensions: Optional[DimensionFilter] = None,
    ) -> ProfitLossReport:
        """Generate income statement (P&L) report."""
        accounts = await self._postable_accounts(tenant_id, company_id)
        movements = await self._movements(tenant_id, company_id, start_date, end_date, dimensions)

        revenue, cost_of_sales, operating_expenses = [], [], []
        other_income, other_expenses = [], []

        for account in accounts:
            if account.account_type not in (AccountType.REVENUE, AccountType.EXPENSE):
                continue
            debit, credit = movements.get(account.id, (ZERO, ZERO))
            amount = natural_balance(account.account_type, debit, credit)
            if amount == 0:
                continue
            line = self._statement_line(account, amount)
            if account.account_type == AccountType.REVENUE:
                if account.sub_type in OTHER_INCOME_SUB_TYPES:
                    other_income.append(line)
                else:
                    revenue.append(line)
            elif account.sub_type in COST_OF_SALES_SUB_TYPES:
                cost_of_sales.append(line)
            elif account.sub_type in OTHER_EXPENSE_SUB_TYPES:
                other_expenses.append(line)
            else:
                operating_expenses.append(line)

        revenue_section = self._section("Revenue", revenue)
        cost_of_sales_section = self._section("Cost of Sales", cost_of_sales)
        operating_section = self._section("Operating Expenses", operating_expenses)
        other_income_section = self._section("Other Income", other_income)
        other_expenses_section = self._section("Other Expenses", other_expenses)

        gross_profit = revenue_section.total - cost_of_sales_section.total
        operating_income = gross_profit - operating_section.total
        net_income = operating_income + other_income_section.total - other_expenses_section.total

        return ProfitLossReport(
            tenant_id=tenant_id,
            company_id=company_id,
            start_date=start_date,
            end_date=end_date,
            revenue=revenue_section,
            cost_of_sales=cost_of_sales_section,
            gross_profit=gross_profit,
            operating_expenses=operating_section,
            operating_income=operating_income,
            other_income=other_income_section,
            other_expenses=other_expenses_section,
            net_income=net_income,
        )

    # =========================================================================
    # CASH FLOW STATEMENT
    # =========================================================================

    def _cash_flow_category(self, account: Account) -> Optional[str]:
        """Category of a non-cash balance sheet account, or 'depreciation' for the add-back."""
        if account.cash_flow_category is not None:
            return account.cash_flow_category.value
        if account.sub_type == AccountSubType.ACCUMULATED_DEPRECIATION:
            return "depreciation"
        if account.sub_type in INVESTING_SUB_TYPES:
            return CashFlowCategory.INVESTING.value
        if account.account_type == AccountType.EQUITY or account.sub_type in NON_CURRENT_LIABILITY_SUB_TYPES:
            return CashFlowCategory.FINANCING.value
        return CashFlowCategory.OPERATING.value

    async def generate_cash_flow_statement(
        self,
        tenant_id: UUID,
        company_id: UUID,
        start_date: date,
        end_date: date,
        dimensions: Optional[DimensionFilter] = None,
    ) -> CashFlowStatementReport:
        """
        Generate cash flow statement (indirect method).

        Net income is adjusted by the period movement of every non-cash
        balance sheet account, classified by cash_flow_category (or sub-type
        when unset). The result is reconciled against the actual movement of
        cash and bank accounts and the difference is reported.
        """
        accounts = await self._postable_accounts(tenant_id, company_id)
        movements = await self._movements(tenant_id, company_id, start_date, end_date, dimensions)
        prior = await self._movements(tenant_id, company_id, None, start_date - timedelta(days=1), dimensions)

        net_income = ZERO
        depreciation = ZERO
        working_capital: List[CashFlowItem] = []
        investing: List[CashFlowItem] = []
        financing: List[CashFlowItem] = []
        beginning_cash = ZERO
        actual_change = ZERO

        for account in accounts:
            debit, credit = movements.get(account.id, (ZERO, ZERO))
            delta = debit - credit  # debit-positive movement

            if account.account_type in (AccountType.REVENUE, AccountType.EXPENSE):
                net_income -= delta
                continue

            if account.sub_type in CASH_SUB_TYPES:
                prior_debit, prior_credit = prior.get(account.id, (ZERO, ZERO))
                beginning_cash += prior_debit - prior_credit
                actual_change += delta
                continue

            if delta == 0:
                continue

            # Increase in an asset consumes cash; increase in a liability/equity provides it
            effect = -delta
            category = self._cash_flow_category(account)
            if category == "depreciation":
                depreciation += effect
            elif category == CashFlowCategory.INVESTING.value:
                investing.append(CashFlowItem(
                    description=account.name,
                    amount=effect,
                    category=CashFlowCategory.INVESTING,
                    account_id=account.id,
                ))
            elif category == CashFlowCategory.FINANCING.value:
                financing.append(CashFlowItem(
                    description=account.name,
                    amount=effect,
                    category=CashFlowCategory.FINANCING,
                    account_id=account.id,
                ))
            else:
                working_capital.append(CashFlowItem(
                    description=f"Change in {account.name}",
                    amount=effect,
                    category=CashFlowCategory.OPERATING,
                    account_id=account.id,
                ))

        operating_total = net_income + depreciation + sum((i.amount for i in working_capital), ZERO)
        investing_total = sum((i.amount for i in investing), ZERO)
        financing_total = sum((i.amount for i in financing), ZERO)
        net_change = operating_total + investing_total + financing_total
        difference = net_change - actual_change
        is_reconciled = abs(difference) <= self.settings.balance_tolerance
        if not is_reconciled:
            logger.warning(
                f"Cash flow for {company_id} {start_date}..{end_date} does not reconcile: difference {difference}"
            )

        return CashFlowStatementReport(
            tenant_id=tenant_id,
            company_id=company_id,
            start_date=start_date,
            end_date=end_date,
            net_income=net_income,
            depreciation=depreciation,
            changes_in_working_capital=working_capital,
            operating_activities_total=operating_total,
            investing_items=investing,
            investing_activities_total=investing_total,
            financing_items=financing,
            financing_activities_total=financing_total,
            net_change_in_cash=net_change,
            beginning_cash=beginning_cash,
            ending_cash=beginning_cash + actual_change,
            actual_change_in_cash=actual_change,
            difference=difference,
            is_reconciled=is_reconciled,
        )
