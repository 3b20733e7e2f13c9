"""
Ledger Core - Services Package
"""
