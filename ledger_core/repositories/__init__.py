"""
Ledger Core - Repository Ports and Adapters
"""

from ledger_core.repositories.base import ConsolidationRepository, LedgerRepository
from ledger_core.repositories.memory import InMemoryConsolidationRepository, InMemoryLedgerRepository

__all__ = [
    "LedgerRepository",
    "ConsolidationRepository",
    "InMemoryLedgerRepository",
    "InMemoryConsolidationRepository",
]
