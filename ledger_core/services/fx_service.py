"""
Ledger Core - FX Policy Resolver

Decides whether a document needs conversion into the base (functional)
currency and validates the supplied rate. One rate applies to every line
derived from a document, so converted lines still balance.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

from ledger_core.config import settings
from ledger_core.schemas.fx import FXDecision, FXPolicyError
from ledger_core.utils.error_handling import ErrorCode, LedgerError
from ledger_core.utils.money import quantize, quantize_rate

logger = logging.getLogger(__name__)


class FXPolicyResolver:
    """Resolver for per-document FX policy and base-currency conversion."""

    def __init__(self, base_currency: Optional[str] = None):
        self.base_currency = (base_currency or settings.base_currency).upper()

    def requires_conversion(self, base_currency: Optional[str], transaction_currency: str) -> bool:
        base = (base_currency or self.base_currency).upper()
        return (transaction_currency or "").upper() != base

    def resolve(
        self,
        base_currency: Optional[str],
        transaction_currency: str,
        rate: Optional[Decimal] = None,
    ) -> Union[FXDecision, FXPolicyError]:
        """
        Resolve the conversion policy for one document.

        A missing rate for a foreign document is EXCHANGE_RATE_REQUIRED; a
        zero or negative rate is INVALID_EXCHANGE_RATE. Domestic documents
        always use rate 1 whatever the caller supplied.
        """
        base = (base_currency or self.base_currency).upper()
        txn = (transaction_currency or "").upper()

        if not self.requires_conversion(base, txn):
            return FXDecision(
                base_currency=base,
                transaction_currency=txn,
                requires_conversion=False,
                rate=Decimal("1"),
            )

        if rate is None:
            return FXPolicyError(
                code=ErrorCode.EXCHANGE_RATE_REQUIRED,
                message=f"Exchange rate is required for {txn} transactions (base currency {base})",
                base_currency=base,
                transaction_currency=txn,
            )

        rate = Decimal(str(rate))
        if rate <= 0:
            return FXPolicyError(
                code=ErrorCode.INVALID_EXCHANGE_RATE,
                message=f"Exchange rate must be positive, got {rate}",
                base_currency=base,
                transaction_currency=txn,
                supplied_rate=rate,
            )

        logger.debug(f"FX resolved {txn}->{base} @ {rate}")
        return FXDecision(
            base_currency=base,
            transaction_currency=txn,
            requires_conversion=True,
            rate=quantize_rate(rate),
        )

    def to_base(self, amount: Decimal, decision: Optional[FXDecision]) -> Decimal:
        """Convert a transaction-currency amount using a resolved decision."""
        if decision is None or not isinstance(decision, FXDecision):
            raise LedgerError(
                code=ErrorCode.FX_RATE_REQUIRED,
                message="Conversion attempted without a resolved exchange rate",
            )
        if not decision.requires_conversion:
            return quantize(amount)
        return quantize(Decimal(str(amount)) * decision.rate)
