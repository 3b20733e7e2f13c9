"""
Ledger Core - Database Models

Importing this package registers every table on LedgerBase.metadata.
"""

from ledger_core.models.base import CompanyScoped, LedgerRecord
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
    IntercompanyTransaction,
)

__all__ = [
    "LedgerRecord",
    "CompanyScoped",
    "LedgerAccount",
    "PartyRecord",
    "BankAccountRecord",
    "JournalEntry",
    "JournalEntryLine",
    "AdvanceBalanceRecord",
    "EntityGroup",
    "EntityGroupMember",
    "IntercompanyTransaction",
    "EliminationEntryRecord",
    "ConsolidationRunRecord",
]
