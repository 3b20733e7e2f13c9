"""
Ledger Core - Journal Posting Service

Validates proposed journals against the double-entry invariants and the
segregation-of-duties policy, and commits accepted journals through the
ledger repository.

Checks run in a fixed order and the first failing check rejects the whole
journal. There is no partial acceptance of a subset of lines.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Union
from uuid import UUID

from ledger_core.config import Settings, settings as default_settings
from ledger_core.repositories.base import LedgerRepository
from ledger_core.schemas.accounting import (
    AdvanceBalanceChange,
    Journal,
    JournalLine,
    PostingAccepted,
    PostingContext,
    PostingRejected,
    VoucherType,
)
from ledger_core.services.audit_service import AuditEvent, AuditEventType, AuditSink
from ledger_core.services.sod import SoDOracle
from ledger_core.utils.error_handling import (
    DuplicateJournalError,
    ErrorCode,
    LedgerError,
)
from ledger_core.utils.money import is_iso_currency, quantize, within_tolerance

logger = logging.getLogger(__name__)


class PostingService:
    """Service for validating and posting journals."""

    def __init__(
        self,
        repository: LedgerRepository,
        sod_oracle: SoDOracle,
        audit_sink: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.sod_oracle = sod_oracle
        self.audit_sink = audit_sink
        self.settings = settings or default_settings

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def validate_journal(
        self,
        journal: Journal,
        context: PostingContext,
    ) -> Union[PostingAccepted, PostingRejected]:
        """
        Validate a journal for posting. Never persists.

        1. line count (NO_LINES, TOO_MANY_LINES)
        2. per-line amounts (NEGATIVE_AMOUNT, INVALID_LINE_AMOUNTS, ZERO_AMOUNTS)
        3. balance and currency (UNBALANCED_JOURNAL, INVALID_CURRENCY)
        4. accounts (ACCOUNT_NOT_FOUND, ACCOUNT_INACTIVE, ACCOUNT_SCOPE_MISMATCH, HEADER_ACCOUNT)
        5. segregation of duties (SOD_VIOLATION)
        """
        # 1. Line count
        if not journal.lines:
            return self._reject(ErrorCode.NO_LINES, "Journal must have at least one line")
        if len(journal.lines) > self.settings.max_journal_lines:
            return self._reject(
                ErrorCode.TOO_MANY_LINES,
                f"Journal has {len(journal.lines)} lines, maximum is {self.settings.max_journal_lines}",
                line_count=len(journal.lines),
                max_lines=self.settings.max_journal_lines,
            )

        # 2. Line amounts
        normalized_lines: List[JournalLine] = []
        for index, line in enumerate(journal.lines, 1):
            debit = quantize(line.debit)
            credit = quantize(line.credit)
            if debit < 0 or credit < 0:
                return self._reject(
                    ErrorCode.NEGATIVE_AMOUNT,
                    f"Line {index}: amounts cannot be negative",
                    line_number=index,
                    debit=str(debit),
                    credit=str(credit),
                )
            if debit > 0 and credit > 0:
                return self._reject(
                    ErrorCode.INVALID_LINE_AMOUNTS,
                    f"Line {index}: cannot have both debit and credit amounts",
                    line_number=index,
                    debit=str(debit),
                    credit=str(credit),
                )
            if debit == 0 and credit == 0:
                return self._reject(
                    ErrorCode.ZERO_AMOUNTS,
                    f"Line {index}: must have either a debit or a credit amount",
                    line_number=index,
                )
            normalized_lines.append(line.model_copy(update={"debit": debit, "credit": credit}))

        # 3. Balance
        total_debit = sum((line.debit for line in normalized_lines), Decimal("0.00"))
        total_credit = sum((line.credit for line in normalized_lines), Decimal("0.00"))
        difference = total_debit - total_credit
        if not within_tolerance(total_debit, total_credit, self.settings.balance_tolerance):
            return self._reject(
                ErrorCode.UNBALANCED_JOURNAL,
                f"Journal entry is not balanced. Debits: {total_debit}, Credits: {total_credit}",
                total_debit=str(total_debit),
                total_credit=str(total_credit),
                difference=str(difference),
            )

        currency = (journal.currency or "").upper()
        if not is_iso_currency(currency):
            return self._reject(
                ErrorCode.INVALID_CURRENCY,
                f"Invalid currency code: {journal.currency}",
                currency=journal.currency,
            )

        # 4. Accounts
        if (journal.tenant_id, journal.company_id) != (context.tenant_id, context.company_id):
            return self._reject(
                ErrorCode.ACCOUNT_SCOPE_MISMATCH,
                "Journal belongs to a different company than the posting context",
                journal_company_id=str(journal.company_id),
                context_company_id=str(context.company_id),
            )

        warnings: List[str] = []
        accounts = await self.repository.get_accounts(line.account_id for line in normalized_lines)
        for index, line in enumerate(normalized_lines, 1):
            account = accounts.get(line.account_id)
            if account is None:
                return self._reject(
                    ErrorCode.ACCOUNT_NOT_FOUND,
                    f"Line {index}: account {line.account_id} not found",
                    line_number=index,
                    account_id=str(line.account_id),
                )
            if (account.tenant_id, account.company_id) != (context.tenant_id, context.company_id):
                return self._reject(
                    ErrorCode.ACCOUNT_SCOPE_MISMATCH,
                    f"Line {index}: account {account.code} belongs to another company",
                    line_number=index,
                    account_id=str(account.id),
                )
            if not account.is_active:
                return self._reject(
                    ErrorCode.ACCOUNT_INACTIVE,
                    f"Line {index}: account {account.code} is inactive",
                    line_number=index,
                    account_id=str(account.id),
                )
            if account.is_header:
                return self._reject(
                    ErrorCode.HEADER_ACCOUNT,
                    f"Line {index}: cannot post to header account {account.code}",
                    line_number=index,
                    account_id=str(account.id),
                )
            if account.currency and account.currency.upper() != currency:
                warnings.append(
                    f"Line {index}: account {account.code} is in {account.currency}, journal is in {currency}"
                )

        # 5. Segregation of duties
        voucher_type = journal.voucher_type.value
        authorized = await self.sod_oracle.is_authorized(
            context.tenant_id,
            context.company_id,
            context.user_id,
            context.role,
            voucher_type,
        )
        if not authorized:
            return self._reject(
                ErrorCode.SOD_VIOLATION,
                f"SoD violation: role '{context.role}' may not post {voucher_type} vouchers",
                role=context.role,
                voucher_type=voucher_type,
                user_id=str(context.user_id),
            )
        approver_roles = await self.sod_oracle.approver_roles(
            context.tenant_id, context.company_id, context.role, voucher_type
        )

        normalized = journal.model_copy(update={"currency": currency, "lines": normalized_lines})
        return PostingAccepted(
            journal=normalized,
            total_debit=total_debit,
            total_credit=total_credit,
            requires_approval=bool(approver_roles),
            approver_roles=approver_roles,
            warnings=warnings,
        )

    def _reject(self, code: ErrorCode, message: str, **details) -> PostingRejected:
        logger.info(f"Journal rejected: {code.value} - {message}")
        return PostingRejected(code=code, message=message, details=details)

    # =========================================================================
    # POSTING
    # =========================================================================

    async def post_journal(
        self,
        journal: Journal,
        context: PostingContext,
    ) -> Union[PostingAccepted, PostingRejected]:
        """Validate then commit a journal. Rejections are returned, never raised."""
        result = await self.validate_journal(journal, context)
        if isinstance(result, PostingRejected):
            await self._emit_failed(journal, context, result.code, result.message)
            return result

        if await self.repository.journal_number_exists(
            context.tenant_id, context.company_id, journal.journal_number
        ):
            rejected = self._reject(
                ErrorCode.DUPLICATE_JOURNAL,
                f"Journal {journal.journal_number} has already been posted",
                journal_number=journal.journal_number,
            )
            await self._emit_failed(journal, context, rejected.code, rejected.message)
            return rejected

        try:
            posted = await self.commit_accepted(result, context)
        except DuplicateJournalError as e:
            return PostingRejected(code=e.code, message=e.message, details=e.details)
        return result.model_copy(update={"journal": posted})

    async def commit_accepted(
        self,
        accepted: PostingAccepted,
        context: PostingContext,
        advance_changes: Sequence[AdvanceBalanceChange] = (),
    ) -> Journal:
        """
        Commit an accepted journal together with its advance balance changes.

        Ledger errors from the repository (duplicate number, advance overdraw,
        persistence unavailable) are reported to the audit sink and re-raised.
        """
        journal = accepted.journal.model_copy(update={"posted_by_id": context.user_id})
        try:
            posted = await self.repository.commit_posting(journal, advance_changes)
        except LedgerError as e:
            logger.error(f"Commit of journal {journal.journal_number} failed: {e.code.value} - {e.message}")
            await self._emit_failed(journal, context, e.code, e.message)
            raise

        logger.info(
            f"Posted journal {posted.journal_number} ({len(posted.lines)} lines, "
            f"{accepted.total_debit} {posted.currency})"
        )
        await self._emit(AuditEvent(
            event_type=AuditEventType.POSTING_SUCCEEDED,
            tenant_id=str(context.tenant_id),
            company_id=str(context.company_id),
            entity_type="journal",
            entity_id=str(posted.id),
            user_id=str(context.user_id),
            payload={
                "journal_number": posted.journal_number,
                "voucher_type": posted.voucher_type.value,
                "total_debit": str(accepted.total_debit),
                "total_credit": str(accepted.total_credit),
                "advance_changes": len(advance_changes),
                "requires_approval": accepted.requires_approval,
            },
        ))
        return posted

    # =========================================================================
    # REVERSALS
    # =========================================================================

    def build_reversal(
        self,
        journal: Journal,
        posting_date: date,
        reason: Optional[str] = None,
        journal_number: Optional[str] = None,
    ) -> Journal:
        """Build the reversing journal for a posted one: same lines, sides swapped."""
        reversal_lines = [
            line.model_copy(update={
                "debit": line.credit,  # Swap
                "credit": line.debit,  # Swap
                "description": f"Reversal: {line.description or ''}".strip(),
            })
            for line in journal.lines
        ]
        description = f"Reversal of {journal.journal_number}"
        if reason:
            description = f"{description}: {reason}"
        return Journal(
            tenant_id=journal.tenant_id,
            company_id=journal.company_id,
            posting_date=posting_date,
            currency=journal.currency,
            journal_number=journal_number or f"REV-{journal.journal_number}",
            description=description,
            voucher_type=VoucherType.REVERSAL,
            lines=reversal_lines,
            source_currency=journal.source_currency,
            exchange_rate=journal.exchange_rate,
            source_reference=journal.journal_number,
            reversal_of_id=journal.id,
        )

    async def reverse_journal(
        self,
        journal_id: UUID,
        context: PostingContext,
        posting_date: date,
        reason: Optional[str] = None,
    ) -> Union[PostingAccepted, PostingRejected]:
        """Post the reversing entry for a committed journal."""
        journal = await self.repository.get_journal(journal_id)
        if journal is None:
            return self._reject(
                ErrorCode.JOURNAL_VALIDATION_FAILED,
                f"Journal {journal_id} not found",
                journal_id=str(journal_id),
            )
        reversal = self.build_reversal(journal, posting_date, reason)
        return await self.post_journal(reversal, context)

    # =========================================================================
    # AUDIT
    # =========================================================================

    async def _emit_failed(self, journal: Journal, context: PostingContext, code: ErrorCode, message: str):
        await self._emit(AuditEvent(
            event_type=AuditEventType.POSTING_FAILED,
            tenant_id=str(context.tenant_id),
            company_id=str(context.company_id),
            entity_type="journal",
            entity_id=str(journal.id),
            user_id=str(context.user_id),
            payload={
                "journal_number": journal.journal_number,
                "code": code.value,
                "message": message,
            },
        ))

    async def _emit(self, event: AuditEvent) -> None:
        if self.audit_sink is not None:
            await self.audit_sink.emit(event)
