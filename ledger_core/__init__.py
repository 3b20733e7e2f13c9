"""
Ledger Core

Double-entry posting and settlement engine:
- Journal validation and posting with segregation of duties
- FX policy resolution for foreign-currency documents
- Payment settlement with withholding, bank charges and advances
- Multi-entity consolidation runs
- Trial balance, balance sheet, P&L and cash flow reports
"""

__version__ = "1.0.0"
