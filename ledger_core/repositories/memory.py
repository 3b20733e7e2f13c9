"""
Ledger Core - In-Memory Repositories

Process-local implementations of the repository ports. Used by tests and
by embedders that keep their own durable store. Advance balance updates
are serialized with one asyncio.Lock per key.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from ledger_core.config import Settings, settings as default_settings
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
)

logger = logging.getLogger(__name__)


class InMemoryLedgerRepository(LedgerRepository):
    """Ledger repository backed by dictionaries."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._accounts: Dict[UUID, Account] = {}
        self._parties: Dict[Tuple[PartyType, UUID], Party] = {}
        self._bank_accounts: Dict[UUID, BankAccount] = {}
        self._advances: Dict[AdvanceKey, AdvanceAccountBalance] = {}
        self._journals: Dict[UUID, Journal] = {}
        self._journal_numbers: Dict[Tuple[UUID, UUID, str], UUID] = {}
        self._advance_locks: Dict[AdvanceKey, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._journal_lock = asyncio.Lock()

    # ===========================================
    # SEEDING
    # ===========================================

    def add_account(self, account: Account) -> Account:
        self._accounts[account.id] = account
        return account

    def add_party(self, party: Party) -> Party:
        self._parties[(party.party_type, party.id)] = party
        return party

    def add_bank_account(self, bank_account: BankAccount) -> BankAccount:
        self._bank_accounts[bank_account.id] = bank_account
        return bank_account

    # ===========================================
    # CHART OF ACCOUNTS
    # ===========================================

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy() if account else None

    async def get_account_by_code(
        self,
        tenant_id: UUID,
        company_id: UUID,
        code: str,
    ) -> Optional[Account]:
        for account in self._accounts.values():
            if account.tenant_id == tenant_id and account.company_id == company_id and account.code == code:
                return account.model_copy()
        return None

    async def list_accounts(self, tenant_id: UUID, company_id: UUID) -> List[Account]:
        accounts = [
            a.model_copy() for a in self._accounts.values()
            if a.tenant_id == tenant_id and a.company_id == company_id
        ]
        return sorted(accounts, key=lambda a: a.code)

    # ===========================================
    # PARTIES & BANK ACCOUNTS
    # ===========================================

    async def get_party(self, party_type: PartyType, party_id: UUID) -> Optional[Party]:
        party = self._parties.get((party_type, party_id))
        return party.model_copy() if party else None

    async def get_bank_account(self, bank_account_id: UUID) -> Optional[BankAccount]:
        bank_account = self._bank_accounts.get(bank_account_id)
        return bank_account.model_copy() if bank_account else None

    # ===========================================
    # ADVANCE / PREPAYMENT SUB-LEDGER
    # ===========================================

    async def get_advance_balance(self, key: AdvanceKey) -> Optional[AdvanceAccountBalance]:
        record = self._advances.get(key)
        return record.model_copy() if record else None

    async def ensure_advance_account(self, key: AdvanceKey, account_id: UUID) -> AdvanceAccountBalance:
        async with self._advance_locks[key]:
            record = self._advances.get(key)
            if record is None:
                record = AdvanceAccountBalance(
                    key=key,
                    account_id=account_id,
                    balance=Decimal("0.00"),
                    updated_at=datetime.now(timezone.utc),
                )
                self._advances[key] = record
                logger.info(
                    f"Created advance account for {key.party_type.value} {key.party_id} ({key.currency})"
                )
            return record.model_copy()

    # ===========================================
    # JOURNALS
    # ===========================================

    async def commit_posting(
        self,
        journal: Journal,
        advance_changes: Sequence[AdvanceBalanceChange] = (),
    ) -> Journal:
        keys = sorted({change.key for change in advance_changes}, key=advance_key_order)
        locks = [self._advance_locks[key] for key in keys]

        async with self._journal_lock:
            for lock in locks:
                await lock.acquire()
            try:
                number_key = (journal.tenant_id, journal.company_id, journal.journal_number)
                if number_key in self._journal_numbers:
                    raise DuplicateJournalError(journal.journal_number)

                # Validate every change before applying any of them
                new_balances: Dict[AdvanceKey, Decimal] = {}
                for change in advance_changes:
                    current = new_balances.get(change.key)
                    if current is None:
                        record = self._advances.get(change.key)
                        current = record.balance if record else Decimal("0.00")
                    updated = current + change.delta
                    if updated < -self.settings.advance_negative_tolerance:
                        raise InsufficientAdvanceError(
                            requested=-change.delta,
                            available=current,
                            currency=change.key.currency,
                        )
                    new_balances[change.key] = updated

                now = datetime.now(timezone.utc)
                posted = journal.model_copy(deep=True, update={"posted_at": journal.posted_at or now})
                self._journals[posted.id] = posted
                self._journal_numbers[number_key] = posted.id

                accounts_by_key = {change.key: change.account_id for change in advance_changes}
                for key, balance in new_balances.items():
                    record = self._advances.get(key)
                    if record is None:
                        record = AdvanceAccountBalance(key=key, account_id=accounts_by_key[key])
                    self._advances[key] = record.model_copy(update={"balance": balance, "updated_at": now})
            finally:
                for lock in reversed(locks):
                    lock.release()

        logger.debug(f"Committed journal {posted.journal_number} with {len(advance_changes)} advance change(s)")
        return posted.model_copy(deep=True)

    async def get_journal(self, journal_id: UUID) -> Optional[Journal]:
        journal = self._journals.get(journal_id)
        return journal.model_copy(deep=True) if journal else None

    async def journal_number_exists(
        self,
        tenant_id: UUID,
        company_id: UUID,
        journal_number: str,
    ) -> bool:
        return (tenant_id, company_id, journal_number) in self._journal_numbers

    async def list_posted_lines(
        self,
        tenant_id: UUID,
        company_id: UUID,
        start_date: Optional[date],
        end_date: date,
    ) -> List[PostedLine]:
        lines = []
        journals = sorted(self._journals.values(), key=lambda j: (j.posting_date, j.journal_number))
        for journal in journals:
            if journal.tenant_id != tenant_id or journal.company_id != company_id:
                continue
            if journal.posting_date > end_date:
                continue
            if start_date is not None and journal.posting_date < start_date:
                continue
            for line in journal.lines:
                lines.append(PostedLine(
                    journal_id=journal.id,
                    journal_number=journal.journal_number,
                    posting_date=journal.posting_date,
                    voucher_type=journal.voucher_type,
                    **line.model_dump(),
                ))
        return lines


class InMemoryConsolidationRepository(ConsolidationRepository):
    """Consolidation repository backed by dictionaries."""

    def __init__(self):
        self._groups: Dict[UUID, ConsolidationGroup] = {}
        self._entities: Dict[UUID, ConsolidationEntity] = {}
        self._transactions: Dict[UUID, IntercompanyTransaction] = {}
        self._eliminations: Dict[UUID, EliminationEntry] = {}
        self._runs: Dict[UUID, ConsolidationRun] = {}
        self._run_lock = asyncio.Lock()

    # ===========================================
    # SEEDING
    # ===========================================

    def add_group(self, group: ConsolidationGroup) -> ConsolidationGroup:
        self._groups[group.id] = group
        return group

    def add_entity(self, entity: ConsolidationEntity) -> ConsolidationEntity:
        self._entities[entity.id] = entity
        return entity

    def add_intercompany_transaction(self, transaction: IntercompanyTransaction) -> IntercompanyTransaction:
        self._transactions[transaction.id] = transaction
        return transaction

    def add_elimination_entry(self, entry: EliminationEntry) -> EliminationEntry:
        self._eliminations[entry.id] = entry
        return entry

    # ===========================================
    # READS
    # ===========================================

    async def get_group(self, group_id: UUID) -> Optional[ConsolidationGroup]:
        group = self._groups.get(group_id)
        return group.model_copy() if group else None

    async def list_entities(self, group_id: UUID) -> List[ConsolidationEntity]:
        return [e.model_copy() for e in self._entities.values() if e.group_id == group_id]

    async def list_intercompany_transactions(
        self,
        group_id: UUID,
        period_start: date,
        period_end: date,
    ) -> List[IntercompanyTransaction]:
        return [
            t.model_copy() for t in self._transactions.values()
            if t.group_id == group_id and period_start <= t.transaction_date <= period_end
        ]

    async def list_elimination_entries(
        self,
        group_id: UUID,
        period_end: date,
    ) -> List[EliminationEntry]:
        return [
            e.model_copy() for e in self._eliminations.values()
            if e.group_id == group_id and e.period_end == period_end
        ]

    async def save_elimination_entries(self, entries: Sequence[EliminationEntry]) -> None:
        for entry in entries:
            self._eliminations[entry.id] = entry.model_copy()

    # ===========================================
    # RUNS
    # ===========================================

    async def create_run(self, run: ConsolidationRun) -> ConsolidationRun:
        stored = run.model_copy(deep=True, update={"created_at": run.created_at or datetime.now(timezone.utc)})
        self._runs[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get_run(self, run_id: UUID) -> Optional[ConsolidationRun]:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def claim_running(self, run: ConsolidationRun) -> ConsolidationRun:
        async with self._run_lock:
            for other in self._runs.values():
                if (
                    other.id != run.id
                    and other.group_id == run.group_id
                    and other.period_end == run.period_end
                    and other.status == RunStatus.RUNNING
                ):
                    raise RunConflictError(run.group_id, run.period_end, other.id)
            claimed = run.model_copy(deep=True, update={
                "status": RunStatus.RUNNING,
                "started_at": datetime.now(timezone.utc),
            })
            self._runs[claimed.id] = claimed
            return claimed.model_copy(deep=True)

    async def save_run(self, run: ConsolidationRun) -> ConsolidationRun:
        self._runs[run.id] = run.model_copy(deep=True)
        return run.model_copy(deep=True)
