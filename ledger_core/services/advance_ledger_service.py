"""
Ledger Core - Advance / Prepayment Ledger

Per-party, per-currency running balances created by overpayments and
consumed by later settlements. Balance changes are returned as
AdvanceBalanceChange records; the repository applies them in the same
commit as the journal that triggered them.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledger_core.config import Settings, settings as default_settings
from ledger_core.repositories.base import LedgerRepository
from ledger_core.schemas.accounting import Account, AdvanceBalanceChange, AdvanceKey, PartyType
from ledger_core.services.account_resolver import AccountResolver
from ledger_core.utils.error_handling import (
    ErrorCode,
    InsufficientAdvanceError,
    ValidationFailedError,
)
from ledger_core.utils.money import quantize

logger = logging.getLogger(__name__)


class AdvanceLedgerService:
    """Service for the advance/prepayment sub-ledger."""

    def __init__(
        self,
        repository: LedgerRepository,
        account_resolver: Optional[AccountResolver] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.settings = settings or default_settings
        self.account_resolver = account_resolver or AccountResolver(repository, self.settings)

    async def resolve_account(self, tenant_id: UUID, company_id: UUID, party_type: PartyType) -> Account:
        """GL control account backing advances of this party type. Read only."""
        return await self.account_resolver.advance_account(tenant_id, company_id, party_type)

    async def resolve_or_create(
        self,
        tenant_id: UUID,
        company_id: UUID,
        party_type: PartyType,
        party_id: UUID,
        currency: str,
    ) -> UUID:
        """Return the account id for the advance key, opening a zero balance on first use."""
        key = AdvanceKey(
            tenant_id=tenant_id,
            company_id=company_id,
            party_type=party_type,
            party_id=party_id,
            currency=currency.upper(),
        )
        existing = await self.repository.get_advance_balance(key)
        if existing is not None:
            return existing.account_id

        account = await self.resolve_account(tenant_id, company_id, party_type)
        record = await self.repository.ensure_advance_account(key, account.id)
        return record.account_id

    def credit(self, key: AdvanceKey, amount: Decimal, account_id: UUID) -> AdvanceBalanceChange:
        """Increase the balance (overpayment received or prepaid)."""
        amount = quantize(amount)
        if amount <= 0:
            raise ValidationFailedError(
                "Advance credit must be positive",
                errors=[f"Invalid advance amount: {amount}"],
                code=ErrorCode.INVALID_AMOUNT,
            )
        return AdvanceBalanceChange(key=key, account_id=account_id, delta=amount)

    async def debit(self, key: AdvanceKey, amount: Decimal) -> AdvanceBalanceChange:
        """
        Decrease the balance when an advance is consumed.

        Consuming more than is available raises InsufficientAdvanceError.
        The amount is never clamped. The repository re-checks at commit time
        so concurrent consumers cannot overdraw the balance.
        """
        amount = quantize(amount)
        if amount <= 0:
            raise ValidationFailedError(
                "Advance debit must be positive",
                errors=[f"Invalid advance amount: {amount}"],
                code=ErrorCode.INVALID_AMOUNT,
            )

        record = await self.repository.get_advance_balance(key)
        available = record.balance if record else Decimal("0.00")
        if record is None or available - amount < -self.settings.advance_negative_tolerance:
            logger.warning(
                f"Advance overdraw rejected for {key.party_type.value} {key.party_id}: "
                f"requested {amount} {key.currency}, available {available}"
            )
            raise InsufficientAdvanceError(requested=amount, available=available, currency=key.currency)

        return AdvanceBalanceChange(key=key, account_id=record.account_id, delta=-amount)

    async def get_balance(self, key: AdvanceKey) -> Decimal:
        record = await self.repository.get_advance_balance(key)
        return record.balance if record else Decimal("0.00")
