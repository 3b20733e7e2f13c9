"""
Ledger Core - Utilities Package
"""
