"""
Ledger Core - Repository Ports

Persistence interfaces consumed by the services. Implementations must make
`commit_posting` all-or-none and serialize concurrent changes to the same
advance balance key.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

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
)


def advance_key_order(key: AdvanceKey) -> Tuple[str, ...]:
    """Lock order for advance balance keys. Every store acquires locks in this order."""
    return (str(key.tenant_id), str(key.company_id), key.party_type.value, str(key.party_id), key.currency)


class LedgerRepository(ABC):
    """Abstract base class for ledger persistence."""

    # ===========================================
    # CHART OF ACCOUNTS
    # ===========================================

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        pass

    async def get_accounts(self, account_ids: Iterable[UUID]) -> Dict[UUID, Account]:
        """Batch lookup. Missing ids are absent from the result."""
        accounts = {}
        for account_id in set(account_ids):
            account = await self.get_account(account_id)
            if account is not None:
                accounts[account_id] = account
        return accounts

    @abstractmethod
    async def get_account_by_code(
        self,
        tenant_id: UUID,
        company_id: UUID,
        code: str,
    ) -> Optional[Account]:
        pass

    @abstractmethod
    async def list_accounts(self, tenant_id: UUID, company_id: UUID) -> List[Account]:
        """All accounts of a company ordered by code."""
        pass

    # ===========================================
    # PARTIES & BANK ACCOUNTS
    # ===========================================

    @abstractmethod
    async def get_party(self, party_type: PartyType, party_id: UUID) -> Optional[Party]:
        pass

    @abstractmethod
    async def get_bank_account(self, bank_account_id: UUID) -> Optional[BankAccount]:
        pass

    # ===========================================
    # ADVANCE / PREPAYMENT SUB-LEDGER
    # ===========================================

    @abstractmethod
    async def get_advance_balance(self, key: AdvanceKey) -> Optional[AdvanceAccountBalance]:
        pass

    @abstractmethod
    async def ensure_advance_account(self, key: AdvanceKey, account_id: UUID) -> AdvanceAccountBalance:
        """Return the balance record for key, creating it at zero if absent."""
        pass

    # ===========================================
    # JOURNALS
    # ===========================================

    @abstractmethod
    async def commit_posting(
        self,
        journal: Journal,
        advance_changes: Sequence[AdvanceBalanceChange] = (),
    ) -> Journal:
        """
        Persist the journal and apply the advance balance changes atomically.

        Raises InsufficientAdvanceError if a change would take a balance
        below the configured negative tolerance, DuplicateJournalError if the
        journal number is already used for the company, and
        PersistenceUnavailableError when the store cannot be reached. In every
        failure case nothing is written.
        """
        pass

    @abstractmethod
    async def get_journal(self, journal_id: UUID) -> Optional[Journal]:
        pass

    @abstractmethod
    async def journal_number_exists(
        self,
        tenant_id: UUID,
        company_id: UUID,
        journal_number: str,
    ) -> bool:
        pass

    @abstractmethod
    async def list_posted_lines(
        self,
        tenant_id: UUID,
        company_id: UUID,
        start_date: Optional[date],
        end_date: date,
    ) -> List[PostedLine]:
        """Committed lines with posting_date in [start_date, end_date]. No start means from inception."""
        pass


class ConsolidationRepository(ABC):
    """Abstract base class for consolidation persistence."""

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[ConsolidationGroup]:
        pass

    @abstractmethod
    async def list_entities(self, group_id: UUID) -> List[ConsolidationEntity]:
        pass

    @abstractmethod
    async def list_intercompany_transactions(
        self,
        group_id: UUID,
        period_start: date,
        period_end: date,
    ) -> List[IntercompanyTransaction]:
        pass

    @abstractmethod
    async def list_elimination_entries(
        self,
        group_id: UUID,
        period_end: date,
    ) -> List[EliminationEntry]:
        """Stored elimination entries (manual ones included) for the period."""
        pass

    @abstractmethod
    async def save_elimination_entries(self, entries: Sequence[EliminationEntry]) -> None:
        pass

    @abstractmethod
    async def create_run(self, run: ConsolidationRun) -> ConsolidationRun:
        pass

    @abstractmethod
    async def get_run(self, run_id: UUID) -> Optional[ConsolidationRun]:
        pass

    @abstractmethod
    async def claim_running(self, run: ConsolidationRun) -> ConsolidationRun:
        """
        Atomically move a Pending run to Running.

        Raises RunConflictError when another run for the same group and
        period_end is already Running.
        """
        pass

    @abstractmethod
    async def save_run(self, run: ConsolidationRun) -> ConsolidationRun:
        pass
