"""
Ledger Core - Schemas Package

Pydantic models exchanged between the services and the repository ports.
"""
