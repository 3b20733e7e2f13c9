"""
Ledger Core - Test Configuration

Pytest fixtures: a seeded in-memory ledger (chart of accounts, parties,
bank accounts) and the services wired on top of it.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4

import pytest

from ledger_core.repositories.memory import InMemoryConsolidationRepository, InMemoryLedgerRepository
from ledger_core.schemas.accounting import (
    DEFAULT_NORMAL_BALANCE,
    Account,
    AccountSubType,
    AccountType,
    BankAccount,
    Journal,
    JournalLine,
    Party,
    PartyType,
    PostingContext,
    VoucherType,
)
from ledger_core.services.account_resolver import AccountResolver
from ledger_core.services.advance_ledger_service import AdvanceLedgerService
from ledger_core.services.audit_service import InMemoryAuditSink
from ledger_core.services.consolidation_service import ConsolidationService
from ledger_core.services.fx_service import FXPolicyResolver
from ledger_core.services.payment_service import PaymentService
from ledger_core.services.posting_service import PostingService
from ledger_core.services.reports_service import ReportsService
from ledger_core.services.sod import StaticRoleSoDOracle


# (code, name, type, sub_type, extra)
CHART: List[Tuple[str, str, AccountType, Optional[AccountSubType], dict]] = [
    ("1000", "Current Assets", AccountType.ASSET, None, {"is_header": True}),
    ("1010", "Bank - Maybank", AccountType.ASSET, AccountSubType.BANK, {}),
    ("1020", "Bank - USD", AccountType.ASSET, AccountSubType.BANK, {"currency": "USD"}),
    ("1100", "Accounts Receivable", AccountType.ASSET, AccountSubType.ACCOUNTS_RECEIVABLE, {}),
    ("1300", "Intercompany Receivable", AccountType.ASSET, AccountSubType.INTERCOMPANY_RECEIVABLE, {}),
    ("1400", "Supplier Prepayments", AccountType.ASSET, AccountSubType.SUPPLIER_PREPAYMENT, {}),
    ("1450", "WHT Clearing", AccountType.ASSET, AccountSubType.WHT_RECEIVABLE, {}),
    ("1500", "Equipment", AccountType.ASSET, AccountSubType.FIXED_ASSET, {}),
    ("1510", "Accumulated Depreciation", AccountType.ASSET, AccountSubType.ACCUMULATED_DEPRECIATION, {}),
    ("1600", "Investment in Subsidiary", AccountType.ASSET, AccountSubType.INVESTMENT, {}),
    ("1900", "Suspense (closed)", AccountType.ASSET, AccountSubType.OTHER_CURRENT_ASSET, {"is_active": False}),
    ("2000", "Accounts Payable", AccountType.LIABILITY, AccountSubType.ACCOUNTS_PAYABLE, {}),
    ("2150", "WHT Payable", AccountType.LIABILITY, AccountSubType.WHT_PAYABLE, {}),
    ("2300", "Customer Advances", AccountType.LIABILITY, AccountSubType.CUSTOMER_ADVANCE, {}),
    ("2500", "Intercompany Payable", AccountType.LIABILITY, AccountSubType.INTERCOMPANY_PAYABLE, {}),
    ("2700", "Term Loan", AccountType.LIABILITY, AccountSubType.LOAN, {}),
    ("3000", "Share Capital", AccountType.EQUITY, AccountSubType.SHARE_CAPITAL, {}),
    ("3100", "Retained Earnings", AccountType.EQUITY, AccountSubType.RETAINED_EARNINGS, {}),
    ("3200", "Translation Reserve", AccountType.EQUITY, AccountSubType.TRANSLATION_RESERVE, {}),
    ("4000", "Sales Revenue", AccountType.REVENUE, AccountSubType.SALES_REVENUE, {}),
    ("4500", "Dividend Income", AccountType.REVENUE, AccountSubType.OTHER_INCOME, {}),
    ("5000", "Cost of Sales", AccountType.EXPENSE, AccountSubType.COST_OF_GOODS_SOLD, {}),
    ("6000", "Operating Expenses", AccountType.EXPENSE, AccountSubType.OPERATING_EXPENSE, {}),
    ("6100", "Depreciation Expense", AccountType.EXPENSE, AccountSubType.DEPRECIATION_EXPENSE, {}),
    ("6200", "Bank Charges", AccountType.EXPENSE, AccountSubType.BANK_CHARGES, {}),
    ("7900", "FX Rounding", AccountType.EXPENSE, AccountSubType.FX_GAIN_LOSS, {}),
]


def seed_chart(
    repo: InMemoryLedgerRepository,
    tenant_id: UUID,
    company_id: UUID,
    currency: str = "MYR",
) -> Dict[str, Account]:
    """Add the standard chart to a company. Returns accounts keyed by code."""
    accounts = {}
    for code, name, account_type, sub_type, extra in CHART:
        values = {"currency": currency, **extra}
        accounts[code] = repo.add_account(Account(
            tenant_id=tenant_id,
            company_id=company_id,
            code=code,
            name=name,
            account_type=account_type,
            normal_balance=DEFAULT_NORMAL_BALANCE[account_type],
            sub_type=sub_type,
            **values,
        ))
    return accounts


def make_journal(
    tenant_id: UUID,
    company_id: UUID,
    number: str,
    lines: List[Tuple[UUID, str, str]],
    posting_date: date = date(2025, 3, 15),
    currency: str = "MYR",
    voucher_type: VoucherType = VoucherType.JOURNAL,
    **line_fields,
) -> Journal:
    """Build a journal from (account_id, debit, credit) tuples."""
    return Journal(
        tenant_id=tenant_id,
        company_id=company_id,
        posting_date=posting_date,
        currency=currency,
        journal_number=number,
        voucher_type=voucher_type,
        lines=[
            JournalLine(account_id=account_id, debit=Decimal(debit), credit=Decimal(credit), **line_fields)
            for account_id, debit, credit in lines
        ],
    )


# =============================================================================
# IDENTITIES
# =============================================================================

@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
def context(tenant_id, company_id) -> PostingContext:
    return PostingContext(tenant_id=tenant_id, company_id=company_id, user_id=uuid4(), role="accountant")


# =============================================================================
# LEDGER DATA
# =============================================================================

@pytest.fixture
def ledger_repo() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository()


@pytest.fixture
def chart(ledger_repo, tenant_id, company_id) -> Dict[str, Account]:
    return seed_chart(ledger_repo, tenant_id, company_id)


@pytest.fixture
def customer(ledger_repo, tenant_id, company_id) -> Party:
    return ledger_repo.add_party(Party(
        tenant_id=tenant_id, company_id=company_id, party_type=PartyType.CUSTOMER,
        name="Syarikat Maju Sdn Bhd", currency="MYR",
    ))


@pytest.fixture
def supplier(ledger_repo, tenant_id, company_id) -> Party:
    return ledger_repo.add_party(Party(
        tenant_id=tenant_id, company_id=company_id, party_type=PartyType.SUPPLIER,
        name="Kilang Besi Bhd", currency="MYR",
    ))


@pytest.fixture
def usd_supplier(ledger_repo, tenant_id, company_id) -> Party:
    return ledger_repo.add_party(Party(
        tenant_id=tenant_id, company_id=company_id, party_type=PartyType.SUPPLIER,
        name="Pacific Components Inc", currency="USD",
    ))


@pytest.fixture
def bank_myr(ledger_repo, chart, tenant_id, company_id) -> BankAccount:
    return ledger_repo.add_bank_account(BankAccount(
        tenant_id=tenant_id, company_id=company_id, name="Maybank Current",
        currency="MYR", gl_account_id=chart["1010"].id,
    ))


@pytest.fixture
def bank_usd(ledger_repo, chart, tenant_id, company_id) -> BankAccount:
    return ledger_repo.add_bank_account(BankAccount(
        tenant_id=tenant_id, company_id=company_id, name="USD Collection",
        currency="USD", gl_account_id=chart["1020"].id,
    ))


# =============================================================================
# SERVICES
# =============================================================================

@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def sod_oracle() -> StaticRoleSoDOracle:
    return StaticRoleSoDOracle()


@pytest.fixture
def posting_service(ledger_repo, sod_oracle, audit_sink) -> PostingService:
    return PostingService(ledger_repo, sod_oracle, audit_sink=audit_sink)


@pytest.fixture
def account_resolver(ledger_repo) -> AccountResolver:
    return AccountResolver(ledger_repo)


@pytest.fixture
def advance_ledger(ledger_repo, account_resolver) -> AdvanceLedgerService:
    return AdvanceLedgerService(ledger_repo, account_resolver)


@pytest.fixture
def payment_service(ledger_repo, posting_service, advance_ledger, account_resolver, audit_sink) -> PaymentService:
    return PaymentService(
        ledger_repo,
        posting_service,
        advance_ledger=advance_ledger,
        account_resolver=account_resolver,
        fx_resolver=FXPolicyResolver("MYR"),
        audit_sink=audit_sink,
    )


@pytest.fixture
def reports_service(ledger_repo) -> ReportsService:
    return ReportsService(ledger_repo)


@pytest.fixture
def consolidation_repo() -> InMemoryConsolidationRepository:
    return InMemoryConsolidationRepository()


@pytest.fixture
def consolidation_service(consolidation_repo, reports_service, audit_sink) -> ConsolidationService:
    return ConsolidationService(consolidation_repo, reports_service, audit_sink=audit_sink)
