"""
Ledger Core - SQL Repositories

SQLAlchemy 2.0 async implementations of the repository ports.

Each public call opens its own session from the session factory. A posting
is written in one transaction: the advance balance rows it touches are
locked FOR UPDATE in a fixed key order, checked, and updated together with
the journal insert.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ledger_core.config import Settings, settings as default_settings
from ledger_core.models.accounting import (
    AdvanceBalanceRecord,
    BankAccountRecord,
    JournalEntry,
    JournalEntryLine,
    LedgerAccount,
    PartyRecord,
)
from ledger_core.models.consolidation import (
    ConsolidationRunRecord,
    EliminationEntryRecord,
    EntityGroup,
    EntityGroupMember,
    IntercompanyTransaction as IntercompanyTransactionRecord,
)
from ledger_core.repositories.base import (
    ConsolidationRepository,
    LedgerRepository,
    advance_key_order,
)
from ledger_core.schemas.accounting import (
    Account,
    AdvanceAccountBalance,
    AdvanceBalanceChange,
    AdvanceKey,
    BankAccount,
    Journal,
    Party,
    PartyType,
    PostedLine,
)
from ledger_core.schemas.consolidation import (
    ConsolidationEntity,
    ConsolidationGroup,
    ConsolidationRun,
    EliminationEntry,
    IntercompanyTransaction,
    RunStatus,
)
from ledger_core.utils.error_handling import (
    DuplicateJournalError,
    InsufficientAdvanceError,
    RunConflictError,
    translate_persistence_error,
)

logger = logging.getLogger(__name__)


def _default_session_factory() -> async_sessionmaker:
    from ledger_core.database import async_session_maker
    return async_session_maker


def _advance_filter(key: AdvanceKey):
    return and_(
        AdvanceBalanceRecord.tenant_id == key.tenant_id,
        AdvanceBalanceRecord.company_id == key.company_id,
        AdvanceBalanceRecord.party_type == key.party_type,
        AdvanceBalanceRecord.party_id == key.party_id,
        AdvanceBalanceRecord.currency == key.currency,
    )


def _to_advance(record: AdvanceBalanceRecord) -> AdvanceAccountBalance:
    return AdvanceAccountBalance(
        key=AdvanceKey(
            tenant_id=record.tenant_id,
            company_id=record.company_id,
            party_type=record.party_type,
            party_id=record.party_id,
            currency=record.currency,
        ),
        account_id=record.account_id,
        balance=record.balance,
        updated_at=record.updated_at,
    )


class SQLLedgerRepository(LedgerRepository):
    """Ledger repository on an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory or _default_session_factory()
        self.settings = settings or default_settings

    # ===========================================
    # CHART OF ACCOUNTS
    # ===========================================

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        try:
            async with self.session_factory() as session:
                record = await session.get(LedgerAccount, account_id)
                return Account.model_validate(record) if record else None
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def get_accounts(self, account_ids) -> Dict[UUID, Account]:
        ids = list(set(account_ids))
        if not ids:
            return {}
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(LedgerAccount).where(LedgerAccount.id.in_(ids)))
                return {r.id: Account.model_validate(r) for r in result.scalars()}
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def get_account_by_code(
        self,
        tenant_id: UUID,
        company_id: UUID,
        code: str,
    ) -> Optional[Account]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(LedgerAccount).where(
                        LedgerAccount.tenant_id == tenant_id,
                        LedgerAccount.company_id == company_id,
                        LedgerAccount.code == code,
                    )
                )
                record = result.scalar_one_or_none()
                return Account.model_validate(record) if record else None
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def list_accounts(self, tenant_id: UUID, company_id: UUID) -> List[Account]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(LedgerAccount)
                    .where(LedgerAccount.tenant_id == tenant_id, LedgerAccount.company_id == company_id)
                    .order_by(LedgerAccount.code)
                )
                return [Account.model_validate(r) for r in result.scalars()]
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    # ===========================================
    # PARTIES & BANK ACCOUNTS
    # ===========================================

    async def get_party(self, party_type: PartyType, party_id: UUID) -> Optional[Party]:
        try:
            async with self.session_factory() as session:
                record = await session.get(PartyRecord, party_id)
                if record is None or record.party_type != party_type:
                    return None
                return Party.model_validate(record)
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def get_bank_account(self, bank_account_id: UUID) -> Optional[BankAccount]:
        try:
            async with self.session_factory() as session:
                record = await session.get(BankAccountRecord, bank_account_id)
                return BankAccount.model_validate(record) if record else None
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    # ===========================================
    # ADVANCE / PREPAYMENT SUB-LEDGER
    # ===========================================

    async def get_advance_balance(self, key: AdvanceKey) -> Optional[AdvanceAccountBalance]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(AdvanceBalanceRecord).where(_advance_filter(key)))
                record = result.scalar_one_or_none()
                return _to_advance(record) if record else None
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def ensure_advance_account(self, key: AdvanceKey, account_id: UUID) -> AdvanceAccountBalance:
        existing = await self.get_advance_balance(key)
        if existing is not None:
            return existing
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    record = AdvanceBalanceRecord(
                        tenant_id=key.tenant_id,
                        company_id=key.company_id,
                        party_type=key.party_type,
                        party_id=key.party_id,
                        currency=key.currency,
                        account_id=account_id,
                        balance=Decimal("0.00"),
                    )
                    session.add(record)
            logger.info(f"Created advance account for {key.party_type.value} {key.party_id} ({key.currency})")
        except IntegrityError:
            # Created concurrently by another posting
            logger.debug(f"Advance account for {key.party_id} ({key.currency}) already exists")
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)
        return await self.get_advance_balance(key)

    async def _apply_advance_changes(
        self,
        session: AsyncSession,
        advance_changes: Sequence[AdvanceBalanceChange],
    ) -> None:
        keys = sorted({change.key for change in advance_changes}, key=advance_key_order)
        records: Dict[AdvanceKey, AdvanceBalanceRecord] = {}
        for key in keys:
            result = await session.execute(
                select(AdvanceBalanceRecord).where(_advance_filter(key)).with_for_update()
            )
            record = result.scalar_one_or_none()
            if record is None:
                account_id = next(c.account_id for c in advance_changes if c.key == key)
                record = AdvanceBalanceRecord(
                    tenant_id=key.tenant_id,
                    company_id=key.company_id,
                    party_type=key.party_type,
                    party_id=key.party_id,
                    currency=key.currency,
                    account_id=account_id,
                    balance=Decimal("0.00"),
                )
                session.add(record)
            records[key] = record

        # Validate every change before applying any of them
        new_balances = {key: record.balance for key, record in records.items()}
        for change in advance_changes:
            current = new_balances[change.key]
            updated = current + change.delta
            if updated < -self.settings.advance_negative_tolerance:
                raise InsufficientAdvanceError(
                    requested=-change.delta,
                    available=current,
                    currency=change.key.currency,
                )
            new_balances[change.key] = updated

        for key, balance in new_balances.items():
            records[key].balance = balance

    # ===========================================
    # JOURNALS
    # ===========================================

    async def commit_posting(
        self,
        journal: Journal,
        advance_changes: Sequence[AdvanceBalanceChange] = (),
    ) -> Journal:
        posted_at = journal.posted_at or datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    duplicate = await session.scalar(
                        select(JournalEntry.id).where(
                            JournalEntry.tenant_id == journal.tenant_id,
                            JournalEntry.company_id == journal.company_id,
                            JournalEntry.journal_number == journal.journal_number,
                        )
                    )
                    if duplicate is not None:
                        raise DuplicateJournalError(journal.journal_number)

                    await self._apply_advance_changes(session, advance_changes)

                    entry = JournalEntry(
                        id=journal.id,
                        tenant_id=journal.tenant_id,
                        company_id=journal.company_id,
                        journal_number=journal.journal_number,
                        posting_date=journal.posting_date,
                        voucher_type=journal.voucher_type,
                        description=journal.description,
                        total_debit=journal.total_debit,
                        total_credit=journal.total_credit,
                        currency=journal.currency,
                        source_currency=journal.source_currency,
                        exchange_rate=journal.exchange_rate,
                        source_reference=journal.source_reference,
                        reversal_of_id=journal.reversal_of_id,
                        posted_at=posted_at,
                        posted_by_id=journal.posted_by_id,
                    )
                    entry.lines = [
                        JournalEntryLine(line_number=number, **line.model_dump())
                        for number, line in enumerate(journal.lines, 1)
                    ]
                    session.add(entry)
        except IntegrityError as e:
            if "uq_journal_entry_number" in str(e.orig):
                raise DuplicateJournalError(journal.journal_number)
            raise translate_persistence_error(e)
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

        logger.debug(f"Committed journal {journal.journal_number} with {len(advance_changes)} advance change(s)")
        return journal.model_copy(deep=True, update={"posted_at": posted_at})

    async def get_journal(self, journal_id: UUID) -> Optional[Journal]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(JournalEntry)
                    .options(selectinload(JournalEntry.lines))
                    .where(JournalEntry.id == journal_id)
                )
                record = result.scalar_one_or_none()
                return Journal.model_validate(record) if record else None
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def journal_number_exists(
        self,
        tenant_id: UUID,
        company_id: UUID,
        journal_number: str,
    ) -> bool:
        try:
            async with self.session_factory() as session:
                found = await session.scalar(
                    select(JournalEntry.id).where(
                        JournalEntry.tenant_id == tenant_id,
                        JournalEntry.company_id == company_id,
                        JournalEntry.journal_number == journal_number,
                    )
                )
                return found is not None
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def list_posted_lines(
        self,
        tenant_id: UUID,
        company_id: UUID,
        start_date: Optional[date],
        end_date: date,
    ) -> List[PostedLine]:
        query = (
            select(JournalEntryLine, JournalEntry)
            .join(JournalEntry, JournalEntryLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.company_id == company_id,
                JournalEntry.posting_date <= end_date,
            )
            .order_by(JournalEntry.posting_date, JournalEntry.journal_number, JournalEntryLine.line_number)
        )
        if start_date is not None:
            query = query.where(JournalEntry.posting_date >= start_date)

        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [
                    PostedLine(
                        journal_id=entry.id,
                        journal_number=entry.journal_number,
                        posting_date=entry.posting_date,
                        voucher_type=entry.voucher_type,
                        account_id=line.account_id,
                        debit=line.debit,
                        credit=line.credit,
                        description=line.description,
                        reference=line.reference,
                        cost_center=line.cost_center,
                        department=line.department,
                        branch=line.branch,
                        territory=line.territory,
                        project=line.project,
                    )
                    for line, entry in result.all()
                ]
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)


# =============================================================================
# CONSOLIDATION
# =============================================================================

def _to_run(record: ConsolidationRunRecord) -> ConsolidationRun:
    return ConsolidationRun.model_validate({
        "id": record.id,
        "group_id": record.group_id,
        "period_start": record.period_start,
        "period_end": record.period_end,
        "status": record.status,
        "progress_percentage": record.progress_percentage,
        "entities_processed": record.entities_processed,
        "accounts_processed": record.accounts_processed,
        "eliminations_created": record.eliminations_created,
        "total_amount_consolidated": record.total_amount_consolidated,
        "error_count": record.error_count,
        "error_details": record.error_details or [],
        "data_completeness": record.data_completeness,
        "requested_by_id": record.requested_by_id,
        "created_at": record.created_at,
        "started_at": record.started_at,
        "completed_at": record.completed_at,
        "failure_reason": record.failure_reason,
        "result": record.result,
    })


def _run_values(run: ConsolidationRun) -> dict:
    return {
        "status": run.status.value,
        "progress_percentage": run.progress_percentage,
        "entities_processed": run.entities_processed,
        "accounts_processed": run.accounts_processed,
        "eliminations_created": run.eliminations_created,
        "total_amount_consolidated": run.total_amount_consolidated,
        "error_count": run.error_count,
        "error_details": run.error_details,
        "data_completeness": run.data_completeness,
        "started_at": run.started_at,
        "completed_at": run.completed_at,
        "failure_reason": run.failure_reason,
        "result": run.result.model_dump(mode="json") if run.result else None,
    }


class SQLConsolidationRepository(ConsolidationRepository):
    """Consolidation repository on an async SQLAlchemy session factory."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or _default_session_factory()

    async def get_group(self, group_id: UUID) -> Optional[ConsolidationGroup]:
        try:
            async with self.session_factory() as session:
                record = await session.get(EntityGroup, group_id)
                return ConsolidationGroup.model_validate(record) if record else None
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def list_entities(self, group_id: UUID) -> List[ConsolidationEntity]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(EntityGroupMember)
                    .where(EntityGroupMember.group_id == group_id)
                    .order_by(EntityGroupMember.name)
                )
                return [ConsolidationEntity.model_validate(r) for r in result.scalars()]
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def list_intercompany_transactions(
        self,
        group_id: UUID,
        period_start: date,
        period_end: date,
    ) -> List[IntercompanyTransaction]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(IntercompanyTransactionRecord).where(
                        IntercompanyTransactionRecord.group_id == group_id,
                        IntercompanyTransactionRecord.transaction_date >= period_start,
                        IntercompanyTransactionRecord.transaction_date <= period_end,
                    )
                )
                return [IntercompanyTransaction.model_validate(r) for r in result.scalars()]
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def list_elimination_entries(
        self,
        group_id: UUID,
        period_end: date,
    ) -> List[EliminationEntry]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(EliminationEntryRecord).where(
                        EliminationEntryRecord.group_id == group_id,
                        EliminationEntryRecord.period_end == period_end,
                    )
                )
                return [EliminationEntry.model_validate(r) for r in result.scalars()]
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def save_elimination_entries(self, entries: Sequence[EliminationEntry]) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    for entry in entries:
                        values = entry.model_dump(mode="json")
                        values["amount"] = entry.amount
                        values["period_end"] = entry.period_end
                        values["id"] = entry.id
                        values["group_id"] = entry.group_id
                        values["run_id"] = entry.run_id
                        await session.merge(EliminationEntryRecord(**values))
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def create_run(self, run: ConsolidationRun) -> ConsolidationRun:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    record = ConsolidationRunRecord(
                        id=run.id,
                        group_id=run.group_id,
                        period_start=run.period_start,
                        period_end=run.period_end,
                        requested_by_id=run.requested_by_id,
                        **_run_values(run),
                    )
                    session.add(record)
                await session.refresh(record)
                return _to_run(record)
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def get_run(self, run_id: UUID) -> Optional[ConsolidationRun]:
        try:
            async with self.session_factory() as session:
                record = await session.get(ConsolidationRunRecord, run_id)
                return _to_run(record) if record else None
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def claim_running(self, run: ConsolidationRun) -> ConsolidationRun:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    # Serialize claims per group on the group row
                    await session.execute(
                        select(EntityGroup.id).where(EntityGroup.id == run.group_id).with_for_update()
                    )
                    running_id = await session.scalar(
                        select(ConsolidationRunRecord.id).where(
                            ConsolidationRunRecord.group_id == run.group_id,
                            ConsolidationRunRecord.period_end == run.period_end,
                            ConsolidationRunRecord.status == RunStatus.RUNNING.value,
                            ConsolidationRunRecord.id != run.id,
                        )
                    )
                    if running_id is not None:
                        raise RunConflictError(run.group_id, run.period_end, running_id)

                    record = await session.get(ConsolidationRunRecord, run.id, with_for_update=True)
                    record.status = RunStatus.RUNNING.value
                    record.started_at = datetime.now(timezone.utc)
                return _to_run(record)
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)

    async def save_run(self, run: ConsolidationRun) -> ConsolidationRun:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    record = await session.get(ConsolidationRunRecord, run.id)
                    for field, value in _run_values(run).items():
                        setattr(record, field, value)
                return _to_run(record)
        except SQLAlchemyError as e:
            raise translate_persistence_error(e)
