"""
Ledger Core - SQL Repository Integration Tests

Runs against a real PostgreSQL database. Set LEDGER_TEST_DATABASE_URL
(postgresql+asyncpg://...) to enable; the tables are created and dropped
around each test.
"""

import os
import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import make_journal
from ledger_core.database import (
    build_engine,
    build_session_factory,
    create_ledger_tables,
    drop_ledger_tables,
)
from ledger_core.models import EntityGroup, LedgerAccount
from ledger_core.repositories.sql import SQLConsolidationRepository, SQLLedgerRepository
from ledger_core.schemas.accounting import (
    AccountSubType,
    AccountType,
    AdvanceBalanceChange,
    AdvanceKey,
    NormalBalance,
    PartyType,
)
from ledger_core.schemas.consolidation import ConsolidationRun, RunStatus
from ledger_core.utils.error_handling import (
    DuplicateJournalError,
    InsufficientAdvanceError,
    RunConflictError,
)

DATABASE_URL = os.environ.get("LEDGER_TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not DATABASE_URL, reason="LEDGER_TEST_DATABASE_URL not set")


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine(DATABASE_URL)
    await create_ledger_tables(engine)
    yield build_session_factory(engine)
    await drop_ledger_tables(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_chart(session_factory, tenant_id, company_id):
    accounts = {
        "1010": LedgerAccount(
            tenant_id=tenant_id, company_id=company_id, code="1010", name="Bank",
            account_type=AccountType.ASSET, sub_type=AccountSubType.BANK, normal_balance=NormalBalance.DEBIT,
        ),
        "2300": LedgerAccount(
            tenant_id=tenant_id, company_id=company_id, code="2300", name="Customer Advances",
            account_type=AccountType.LIABILITY, sub_type=AccountSubType.CUSTOMER_ADVANCE,
            normal_balance=NormalBalance.CREDIT,
        ),
        "4000": LedgerAccount(
            tenant_id=tenant_id, company_id=company_id, code="4000", name="Sales",
            account_type=AccountType.REVENUE, sub_type=AccountSubType.SALES_REVENUE,
            normal_balance=NormalBalance.CREDIT,
        ),
    }
    async with session_factory() as session:
        async with session.begin():
            session.add_all(accounts.values())
    return {code: record.id for code, record in accounts.items()}


class TestSQLLedgerRepository:
    """Tests for journal and advance persistence."""
    
    @pytest.mark.asyncio
    async def test_commit_and_read_back(self, session_factory, sql_chart, tenant_id, company_id):
        repo = SQLLedgerRepository(session_factory)
        journal = make_journal(tenant_id, company_id, "JV-1", [
            (sql_chart["1010"], "250.00", "0"), (sql_chart["4000"], "0", "250.00"),
        ], cost_center="KL")
        
        await repo.commit_posting(journal)
        
        stored = await repo.get_journal(journal.id)
        assert stored.journal_number == "JV-1"
        assert [line.debit for line in stored.lines] == [Decimal("250.00"), Decimal("0.00")]
        assert await repo.journal_number_exists(tenant_id, company_id, "JV-1")
        lines = await repo.list_posted_lines(tenant_id, company_id, None, date(2025, 3, 31))
        assert len(lines) == 2
        assert lines[0].cost_center == "KL"
        accounts = await repo.list_accounts(tenant_id, company_id)
        assert [a.code for a in accounts] == ["1010", "2300", "4000"]
    
    @pytest.mark.asyncio
    async def test_duplicate_journal_number(self, session_factory, sql_chart, tenant_id, company_id):
        repo = SQLLedgerRepository(session_factory)
        lines = [(sql_chart["1010"], "10.00", "0"), (sql_chart["4000"], "0", "10.00")]
        await repo.commit_posting(make_journal(tenant_id, company_id, "JV-2", lines))
        
        with pytest.raises(DuplicateJournalError):
            await repo.commit_posting(make_journal(tenant_id, company_id, "JV-2", lines))
    
    @pytest.mark.asyncio
    async def test_advance_overdraw_writes_nothing(self, session_factory, sql_chart, tenant_id, company_id):
        repo = SQLLedgerRepository(session_factory)
        key = AdvanceKey(
            tenant_id=tenant_id, company_id=company_id,
            party_type=PartyType.CUSTOMER, party_id=uuid4(), currency="MYR",
        )
        credit = AdvanceBalanceChange(key=key, account_id=sql_chart["2300"], delta=Decimal("50.00"))
        await repo.commit_posting(
            make_journal(tenant_id, company_id, "RCP-1", [
                (sql_chart["1010"], "50.00", "0"), (sql_chart["2300"], "0", "50.00"),
            ]),
            [credit],
        )
        assert (await repo.get_advance_balance(key)).balance == Decimal("50.00")
        
        overdraw = AdvanceBalanceChange(key=key, account_id=sql_chart["2300"], delta=Decimal("-60.00"))
        with pytest.raises(InsufficientAdvanceError):
            await repo.commit_posting(
                make_journal(tenant_id, company_id, "ADV-1", [
                    (sql_chart["2300"], "60.00", "0"), (sql_chart["4000"], "0", "60.00"),
                ]),
                [overdraw],
            )
        
        assert (await repo.get_advance_balance(key)).balance == Decimal("50.00")
        assert not await repo.journal_number_exists(tenant_id, company_id, "ADV-1")
    
    @pytest.mark.asyncio
    async def test_ensure_advance_account_is_idempotent(self, session_factory, sql_chart, tenant_id, company_id):
        repo = SQLLedgerRepository(session_factory)
        key = AdvanceKey(
            tenant_id=tenant_id, company_id=company_id,
            party_type=PartyType.CUSTOMER, party_id=uuid4(), currency="MYR",
        )
        
        first = await repo.ensure_advance_account(key, sql_chart["2300"])
        second = await repo.ensure_advance_account(key, sql_chart["2300"])
        
        assert first.balance == second.balance == Decimal("0.00")
        assert second.account_id == sql_chart["2300"]


class TestSQLConsolidationRepository:
    """Tests for consolidation run persistence."""
    
    @pytest.mark.asyncio
    async def test_claim_conflict(self, session_factory, tenant_id):
        group = EntityGroup(tenant_id=tenant_id, name="Acme Group", reporting_currency="MYR")
        async with session_factory() as session:
            async with session.begin():
                session.add(group)
        repo = SQLConsolidationRepository(session_factory)
        first = await repo.create_run(ConsolidationRun(
            group_id=group.id, period_start=date(2025, 1, 1), period_end=date(2025, 3, 31),
        ))
        second = await repo.create_run(ConsolidationRun(
            group_id=group.id, period_start=date(2025, 1, 1), period_end=date(2025, 3, 31),
        ))
        
        claimed = await repo.claim_running(first)
        assert claimed.status == RunStatus.RUNNING
        
        with pytest.raises(RunConflictError):
            await repo.claim_running(second)
        assert (await repo.get_run(second.id)).status == RunStatus.PENDING
    
    @pytest.mark.asyncio
    async def test_save_run_round_trips_counters(self, session_factory, tenant_id):
        group = EntityGroup(tenant_id=tenant_id, name="Acme Group", reporting_currency="MYR")
        async with session_factory() as session:
            async with session.begin():
                session.add(group)
        repo = SQLConsolidationRepository(session_factory)
        run = await repo.create_run(ConsolidationRun(
            group_id=group.id, period_start=date(2025, 1, 1), period_end=date(2025, 3, 31),
        ))
        
        run.progress_percentage = 40
        run.error_count = 1
        run.error_details.append({"code": "ENTITY_DATA_MISSING", "message": "no data"})
        run.data_completeness = Decimal("0.5000")
        await repo.save_run(run)
        
        stored = await repo.get_run(run.id)
        assert stored.progress_percentage == 40
        assert stored.error_details[0]["code"] == "ENTITY_DATA_MISSING"
        assert stored.data_completeness == Decimal("0.5000")
