"""
Ledger Core - Account Resolution

System accounts (withholding payable, advances, FX rounding, ...) are
looked up in the company's chart of accounts by the codes configured in
settings. Nothing in the core refers to a literal account id.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from ledger_core.config import Settings, settings as default_settings
from ledger_core.repositories.base import LedgerRepository
from ledger_core.schemas.accounting import Account, PartyType
from ledger_core.utils.error_handling import AccountNotConfiguredError

logger = logging.getLogger(__name__)


class AccountResolver:
    """Resolves configured system accounts for a (tenant, company)."""

    def __init__(self, repository: LedgerRepository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or default_settings

    async def resolve_code(
        self,
        tenant_id: UUID,
        company_id: UUID,
        code: str,
        purpose: str,
    ) -> Account:
        account = await self.repository.get_account_by_code(tenant_id, company_id, code)
        if account is None or not account.is_active:
            logger.error(f"System account {code} ({purpose}) missing for company {company_id}")
            raise AccountNotConfiguredError(purpose, code)
        return account

    async def withholding_payable(self, tenant_id: UUID, company_id: UUID) -> Account:
        return await self.resolve_code(
            tenant_id, company_id, self.settings.withholding_payable_account_code, "withholding tax payable"
        )

    async def withholding_clearing(self, tenant_id: UUID, company_id: UUID) -> Account:
        return await self.resolve_code(
            tenant_id, company_id, self.settings.withholding_clearing_account_code, "withholding tax clearing"
        )

    async def fx_rounding(self, tenant_id: UUID, company_id: UUID) -> Account:
        return await self.resolve_code(
            tenant_id, company_id, self.settings.fx_rounding_account_code, "FX rounding"
        )

    async def advance_account(self, tenant_id: UUID, company_id: UUID, party_type: PartyType) -> Account:
        """Customer advances are a liability, supplier prepayments an asset."""
        if party_type == PartyType.CUSTOMER:
            return await self.resolve_code(
                tenant_id, company_id, self.settings.customer_advance_account_code, "customer advances"
            )
        return await self.resolve_code(
            tenant_id, company_id, self.settings.supplier_prepayment_account_code, "supplier prepayments"
        )


class AccountRegistry:
    """Structural checks over a chart of accounts."""

    @staticmethod
    def validate_hierarchy(accounts: Sequence[Account]) -> List[str]:
        """
        Return every violation found (empty when the chart is valid):
        - code unique per (tenant, company)
        - parent exists in the same (tenant, company)
        - a child's type matches its parent's type
        """
        errors: List[str] = []
        by_id: Dict[UUID, Account] = {a.id: a for a in accounts}

        codes = Counter((a.tenant_id, a.company_id, a.code) for a in accounts)
        for (tenant_id, company_id, code), count in codes.items():
            if count > 1:
                errors.append(f"Account code {code} is used {count} times in company {company_id}")

        for account in accounts:
            if account.parent_id is None:
                continue
            parent = by_id.get(account.parent_id)
            if parent is None:
                errors.append(f"Account {account.code}: parent {account.parent_id} not found")
                continue
            if (parent.tenant_id, parent.company_id) != (account.tenant_id, account.company_id):
                errors.append(f"Account {account.code}: parent {parent.code} belongs to another company")
            if parent.account_type != account.account_type:
                errors.append(
                    f"Account {account.code}: type {account.account_type.value} "
                    f"incompatible with parent {parent.code} ({parent.account_type.value})"
                )
        return errors
