"""
Ledger Core - Payment / Settlement Processor

Turns a payment with allocations, bank charges, withholding tax and an
optional foreign currency into one balanced journal, and commits that
journal together with any advance/prepayment balance change.

Line building (amounts converted to base currency at one rate per payment):
- Bank:        net cash (amount - withholding). Credit for bill payments,
               debit for invoice receipts.
- Allocations: debit AP per bill, credit AR per invoice.
- Charges:     opposite side to the bank line.
- Withholding: debit clearing, credit payable, per tax line.
- Remainder:   credit customer advance (receipts) or debit supplier
               prepayment (payments). Its base amount is taken by difference
               so the journal balances exactly.
- Rounding:    a sub-tolerance base residual with no remainder goes to the
               FX rounding account.

Either a balanced, validated journal and its advance update are committed
together, or nothing is.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import UUID

from ledger_core.config import Settings, settings as default_settings
from ledger_core.repositories.base import LedgerRepository
from ledger_core.schemas.accounting import (
    AdvanceKey,
    Journal,
    JournalLine,
    PartyType,
    PostingContext,
    PostingRejected,
    VoucherType,
)
from ledger_core.schemas.fx import FXDecision, FXPolicyError
from ledger_core.schemas.payment import (
    AdvanceApplicationRequest,
    AllocationCheck,
    AllocationType,
    PaymentAllocation,
    PaymentDirection,
    PaymentFailed,
    PaymentMethod,
    PaymentProcessed,
    PaymentRequest,
    PaymentSummary,
    SettlementPlan,
    SettlementTotals,
)
from ledger_core.services.account_resolver import AccountResolver
from ledger_core.services.advance_ledger_service import AdvanceLedgerService
from ledger_core.services.audit_service import AuditEvent, AuditEventType, AuditSink
from ledger_core.services.fx_service import FXPolicyResolver
from ledger_core.services.posting_service import PostingService
from ledger_core.utils.error_handling import (
    AccountNotConfiguredError,
    BusinessRuleError,
    ErrorCode,
    InsufficientAdvanceError,
)
from ledger_core.utils.money import ZERO, is_iso_currency, money_sum, quantize

logger = logging.getLogger(__name__)

VALID_METHODS = {method.value for method in PaymentMethod}


class PaymentService:
    """Service for settling bills and invoices."""

    def __init__(
        self,
        repository: LedgerRepository,
        posting_service: PostingService,
        advance_ledger: Optional[AdvanceLedgerService] = None,
        account_resolver: Optional[AccountResolver] = None,
        fx_resolver: Optional[FXPolicyResolver] = None,
        audit_sink: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.posting_service = posting_service
        self.settings = settings or default_settings
        self.account_resolver = account_resolver or AccountResolver(repository, self.settings)
        self.advance_ledger = advance_ledger or AdvanceLedgerService(repository, self.account_resolver, self.settings)
        self.fx_resolver = fx_resolver or FXPolicyResolver(self.settings.base_currency)
        self.audit_sink = audit_sink

    # =========================================================================
    # BUSINESS RULES
    # =========================================================================

    def validate_business_rules(self, request: PaymentRequest, today: Optional[date] = None) -> List[str]:
        """Every violated rule, in a stable order. Empty when the request is valid."""
        errors: List[str] = []
        today = today or date.today()
        currency = (request.currency or "").upper()
        tolerance = self.settings.balance_tolerance

        if request.payment_date > today:
            errors.append("Payment date cannot be in the future")

        if not is_iso_currency(currency):
            errors.append("Currency must be a valid 3-letter ISO code")
        elif self.fx_resolver.requires_conversion(None, currency):
            if request.exchange_rate is None or request.exchange_rate <= 0:
                errors.append("Exchange rate must be positive for foreign currency payments")

        if request.amount <= 0:
            errors.append("Payment amount must be greater than zero")

        if (request.method or "").upper() not in VALID_METHODS:
            errors.append(f"Invalid payment method: {request.method}")

        if not request.allocations:
            errors.append("At least one allocation is required")

        for i, allocation in enumerate(request.allocations, 1):
            if allocation.allocated_amount <= 0:
                errors.append(f"Allocation {i}: amount must be greater than zero")
            if allocation.allocation_type == AllocationType.BILL:
                if not allocation.supplier_id:
                    errors.append(f"Allocation {i}: Supplier ID required for bill payments")
                if not allocation.ap_account_id:
                    errors.append(f"Allocation {i}: AP account required for bill payments")
            else:
                if not allocation.customer_id:
                    errors.append(f"Allocation {i}: Customer ID required for invoice receipts")
                if not allocation.ar_account_id:
                    errors.append(f"Allocation {i}: AR account required for invoice receipts")

        if len({a.allocation_type for a in request.allocations}) > 1:
            errors.append("Allocations cannot mix bills and invoices in one payment")

        for i, charge in enumerate(request.bank_charges, 1):
            if charge.amount <= 0:
                errors.append(f"Bank charge {i}: amount must be greater than zero")

        for i, tax in enumerate(request.withholding_taxes, 1):
            if tax.amount <= 0:
                errors.append(f"Withholding tax {i}: amount must be greater than zero")

        total_applied = self._total_applied(request)
        if total_applied > request.amount + tolerance:
            errors.append(
                f"Total allocated plus bank charges and withholding ({total_applied}) "
                f"exceeds payment amount ({quantize(request.amount)})"
            )
        elif total_applied < request.amount and self._advance_party(request) is None:
            errors.append("Overpayment requires a single customer or supplier to hold the advance")

        return errors

    def _total_applied(self, request: PaymentRequest) -> Decimal:
        return (
            money_sum(a.allocated_amount for a in request.allocations)
            + money_sum(c.amount for c in request.bank_charges)
            + money_sum(t.amount for t in request.withholding_taxes)
        )

    def _advance_party(self, request: PaymentRequest) -> Optional[Tuple[PartyType, UUID]]:
        """Party that holds an overpayment: the named party, else the single allocated one."""
        if not request.allocations:
            return None
        if request.allocations[0].allocation_type == AllocationType.BILL:
            party_type = PartyType.SUPPLIER
            named = request.supplier_id
        else:
            party_type = PartyType.CUSTOMER
            named = request.customer_id
        if named:
            return party_type, named
        party_ids = {a.party_id for a in request.allocations if a.party_id}
        if len(party_ids) == 1:
            return party_type, party_ids.pop()
        return None

    # =========================================================================
    # SETTLEMENT
    # =========================================================================

    async def build_settlement(
        self,
        request: PaymentRequest,
        context: PostingContext,
    ) -> Union[SettlementPlan, PaymentFailed]:
        """Build and validate the settlement journal. Reads only, never writes."""
        currency = (request.currency or "").upper()
        base_currency = self.settings.base_currency

        # 1. FX policy
        decision: Optional[FXDecision] = None
        if is_iso_currency(currency):
            fx_result = self.fx_resolver.resolve(base_currency, currency, request.exchange_rate)
            if isinstance(fx_result, FXPolicyError):
                return PaymentFailed(
                    code=fx_result.code,
                    message=fx_result.message,
                    errors=[fx_result.message],
                    details={"currency": currency, "base_currency": base_currency},
                )
            decision = fx_result

        # 2. Currency consistency, only for a well-formed code; a malformed
        #    one is reported with the other rule violations below
        bank_account = await self.repository.get_bank_account(request.bank_account_id)
        if bank_account is None or (bank_account.tenant_id, bank_account.company_id) != (
            request.tenant_id, request.company_id
        ):
            return PaymentFailed(
                code=ErrorCode.BANK_ACCOUNT_NOT_FOUND,
                message=f"Bank account {request.bank_account_id} not found",
                errors=[f"Bank account {request.bank_account_id} not found"],
            )

        if is_iso_currency(currency):
            mismatches = await self._currency_mismatches(request, currency, bank_account.currency, decision)
            if isinstance(mismatches, PaymentFailed):
                return mismatches
            if mismatches:
                return PaymentFailed(
                    code=ErrorCode.CURRENCY_MISMATCH,
                    message="Payment currency does not match the parties or bank account",
                    errors=mismatches,
                    details={"currency": currency},
                )

        # 3. Business rules, all of them
        errors = self.validate_business_rules(request)
        if errors:
            logger.info(f"Payment {request.payment_number} failed validation: {errors}")
            return PaymentFailed(
                code=ErrorCode.PAYMENT_VALIDATION_FAILED,
                message="Payment validation failed",
                errors=errors,
            )

        # 4. Build lines
        try:
            built = await self._build_lines(request, bank_account.gl_account_id, decision)
        except AccountNotConfiguredError as e:
            return PaymentFailed(code=e.code, message=e.message, errors=[e.message], details=e.details)
        if isinstance(built, PaymentFailed):
            return built
        lines, totals, advance_change, party_type, warnings = built

        direction = self._direction(request)
        journal = Journal(
            tenant_id=request.tenant_id,
            company_id=request.company_id,
            posting_date=request.payment_date,
            currency=base_currency,
            journal_number=f"PAY-{request.payment_number}",
            description=request.description or f"{direction.value.title()} {request.payment_number}",
            voucher_type=VoucherType.PAYMENT if direction == PaymentDirection.PAYMENT else VoucherType.RECEIPT,
            lines=lines,
            source_currency=currency,
            exchange_rate=totals.exchange_rate,
            source_reference=request.reference or request.payment_number,
        )

        # 5. Journal validation
        posting = await self.posting_service.validate_journal(journal, context)
        if isinstance(posting, PostingRejected):
            return PaymentFailed(
                code=ErrorCode.JOURNAL_VALIDATION_FAILED,
                message=posting.message,
                errors=[posting.message],
                details={"rule": posting.code.value, **posting.details},
            )

        return SettlementPlan(
            payment_number=request.payment_number,
            direction=direction,
            posting=posting,
            totals=totals,
            allocations_processed=len(request.allocations),
            advance_change=advance_change,
            advance_party_type=party_type if advance_change else None,
            warnings=warnings + posting.warnings,
        )

    async def process_payment(
        self,
        request: PaymentRequest,
        context: PostingContext,
    ) -> Union[PaymentProcessed, PaymentFailed]:
        """
        Build, validate and commit a payment.

        The journal and the advance balance update are committed atomically.
        Persistence failures propagate as PersistenceUnavailableError; the
        processor never retries.
        """
        plan = await self.build_settlement(request, context)
        if isinstance(plan, PaymentFailed):
            await self._emit_payment_failed(request.payment_number, context, plan)
            return plan

        # commit_posting opens a missing advance row in the same transaction
        # as the journal.
        advance_changes = [plan.advance_change] if plan.advance_change is not None else []

        try:
            posted = await self.posting_service.commit_accepted(plan.posting, context, advance_changes)
        except BusinessRuleError as e:
            failed = PaymentFailed(code=e.code, message=e.message, errors=[e.message], details=e.details)
            await self._emit_payment_failed(request.payment_number, context, failed)
            return failed

        result = PaymentProcessed(
            payment_number=plan.payment_number,
            direction=plan.direction,
            journal=posted,
            totals=plan.totals,
            allocations_processed=plan.allocations_processed,
            advance_applied=plan.advance_change.delta if plan.advance_change else Decimal("0.00"),
            advance_account_id=plan.advance_change.account_id if plan.advance_change else None,
            advance_party_type=plan.advance_party_type,
            warnings=plan.warnings,
        )
        logger.info(
            f"Processed {plan.direction.value} {plan.payment_number}: "
            f"{plan.allocations_processed} allocation(s), advance {result.advance_applied}"
        )
        await self._emit(AuditEvent(
            event_type=AuditEventType.PAYMENT_PROCESSED,
            tenant_id=str(context.tenant_id),
            company_id=str(context.company_id),
            entity_type="payment",
            entity_id=plan.payment_number,
            user_id=str(context.user_id),
            payload={
                "journal_id": str(posted.id),
                "journal_number": posted.journal_number,
                "amount": str(plan.totals.total_amount),
                "base_amount": str(plan.totals.base_amount),
                "fx_applied": plan.totals.fx_applied,
                "advance_applied": str(result.advance_applied),
            },
        ))
        return result

    # =========================================================================
    # LINE BUILDING
    # =========================================================================

    def _direction(self, request: PaymentRequest) -> PaymentDirection:
        if request.allocations and request.allocations[0].allocation_type == AllocationType.BILL:
            return PaymentDirection.PAYMENT
        return PaymentDirection.RECEIPT

    async def _currency_mismatches(
        self,
        request: PaymentRequest,
        currency: str,
        bank_currency: str,
        decision: Optional[FXDecision],
    ) -> Union[List[str], PaymentFailed]:
        mismatches: List[str] = []
        base_currency = self.settings.base_currency

        bank_currency = (bank_currency or "").upper()
        if bank_currency != currency:
            foreign_via_base = (
                bank_currency == base_currency
                and decision is not None
                and decision.requires_conversion
            )
            if not foreign_via_base:
                mismatches.append(
                    f"Bank account currency ({bank_currency}) does not match payment currency ({currency})"
                )

        named: Dict[Tuple[PartyType, UUID], None] = {}
        if request.supplier_id:
            named[(PartyType.SUPPLIER, request.supplier_id)] = None
        if request.customer_id:
            named[(PartyType.CUSTOMER, request.customer_id)] = None
        for allocation in request.allocations:
            if allocation.supplier_id:
                named[(PartyType.SUPPLIER, allocation.supplier_id)] = None
            if allocation.customer_id:
                named[(PartyType.CUSTOMER, allocation.customer_id)] = None

        for party_type, party_id in named:
            party = await self.repository.get_party(party_type, party_id)
            if party is None:
                message = f"{party_type.value.title()} {party_id} not found"
                return PaymentFailed(code=ErrorCode.PARTY_NOT_FOUND, message=message, errors=[message])
            if party.currency and party.currency.upper() != currency:
                mismatches.append(
                    f"{party_type.value.title()} {party.name} currency ({party.currency}) "
                    f"does not match payment currency ({currency})"
                )
        return mismatches

    async def _build_lines(
        self,
        request: PaymentRequest,
        bank_gl_account_id: UUID,
        decision: FXDecision,
    ):
        tenant_id, company_id = request.tenant_id, request.company_id
        direction = self._direction(request)
        outgoing = direction == PaymentDirection.PAYMENT
        def to_base(value: Decimal) -> Decimal:
            return self.fx_resolver.to_base(value, decision)

        reference = request.reference or request.payment_number

        amount = quantize(request.amount)
        total_allocated = money_sum(a.allocated_amount for a in request.allocations)
        total_charges = money_sum(c.amount for c in request.bank_charges)
        total_withholding = money_sum(t.amount for t in request.withholding_taxes)
        remainder = amount - total_allocated - total_charges - total_withholding
        if remainder < 0:
            # Over by no more than the tolerance, already accepted by the rules
            remainder = ZERO

        base_amount = to_base(amount)
        base_withholding = [to_base(t.amount) for t in request.withholding_taxes]
        base_allocations = [to_base(a.allocated_amount) for a in request.allocations]
        base_charges = [to_base(c.amount) for c in request.bank_charges]
        net_cash = base_amount - sum(base_withholding, ZERO)

        lines: List[JournalLine] = []
        warnings: List[str] = []

        def add(account_id: UUID, amount: Decimal, debit: bool, description: str, line_reference: str):
            lines.append(JournalLine(
                account_id=account_id,
                debit=amount if debit else ZERO,
                credit=ZERO if debit else amount,
                description=description,
                reference=line_reference,
            ))

        # Bank
        if net_cash > 0:
            add(
                bank_gl_account_id, net_cash, not outgoing,
                f"{'Payment' if outgoing else 'Receipt'} {request.payment_number}", reference,
            )

        # Allocations
        for allocation, base in zip(request.allocations, base_allocations):
            document = allocation.document_number or str(allocation.document_id or "")
            if outgoing:
                add(allocation.ap_account_id, base, True, f"Bill payment {document}".strip(), document or reference)
            else:
                add(allocation.ar_account_id, base, False, f"Invoice receipt {document}".strip(), document or reference)

        # Bank charges
        for charge, base in zip(request.bank_charges, base_charges):
            add(charge.account_id, base, outgoing, charge.description or "Bank charges", reference)

        # Withholding tax
        for tax, base in zip(request.withholding_taxes, base_withholding):
            clearing_id = tax.clearing_account_id or (
                await self.account_resolver.withholding_clearing(tenant_id, company_id)
            ).id
            payable_id = tax.payable_account_id or (
                await self.account_resolver.withholding_payable(tenant_id, company_id)
            ).id
            label = tax.description or f"Withholding tax {tax.tax_code or ''}".strip()
            add(clearing_id, base, True, label, reference)
            add(payable_id, base, False, label, reference)

        # Remainder in base currency, by difference
        base_remainder = base_amount - sum(base_withholding, ZERO) - sum(base_allocations, ZERO) - sum(base_charges, ZERO)

        advance_change = None
        party_type = None
        if remainder > 0:
            if base_remainder <= 0:
                return PaymentFailed(
                    code=ErrorCode.JOURNAL_VALIDATION_FAILED,
                    message="Overpayment is too small to convert into base currency",
                    errors=[f"Remainder {remainder} {decision.transaction_currency} converts to {base_remainder}"],
                )
            party_type, party_id = self._advance_party(request)
            advance_account = await self.advance_ledger.resolve_account(tenant_id, company_id, party_type)
            key = AdvanceKey(
                tenant_id=tenant_id,
                company_id=company_id,
                party_type=party_type,
                party_id=party_id,
                currency=decision.transaction_currency,
            )
            advance_change = self.advance_ledger.credit(key, remainder, advance_account.id)
            label = "Customer advance" if party_type == PartyType.CUSTOMER else "Supplier prepayment"
            add(advance_account.id, base_remainder, outgoing, f"{label} {request.payment_number}", reference)
        elif base_remainder != 0:
            if abs(base_remainder) > self.settings.fx_rounding_tolerance:
                return PaymentFailed(
                    code=ErrorCode.JOURNAL_VALIDATION_FAILED,
                    message="FX rounding residual exceeds tolerance",
                    errors=[f"Residual {base_remainder} exceeds {self.settings.fx_rounding_tolerance}"],
                    details={"residual": str(base_remainder)},
                )
            rounding = await self.account_resolver.fx_rounding(tenant_id, company_id)
            # A positive residual means the allocation side is short
            add(rounding.id, abs(base_remainder), outgoing == (base_remainder > 0), "FX rounding", reference)
            warnings.append(f"FX rounding adjustment of {base_remainder} {decision.base_currency}")

        totals = SettlementTotals(
            total_amount=amount,
            total_allocated=total_allocated,
            total_bank_charges=total_charges,
            total_withholding=total_withholding,
            remainder=remainder,
            base_amount=base_amount,
            fx_applied=decision.requires_conversion,
            exchange_rate=decision.rate,
        )
        return lines, totals, advance_change, party_type, warnings

    # =========================================================================
    # ADVANCE CONSUMPTION
    # =========================================================================

    async def apply_advance(
        self,
        request: AdvanceApplicationRequest,
        context: PostingContext,
    ) -> Union[PaymentProcessed, PaymentFailed]:
        """
        Consume an existing advance against an open document.

        Invoice: Dr customer advance / Cr AR.  Bill: Dr AP / Cr supplier prepayment.
        Consuming more than the available balance fails with ADVANCE_INSUFFICIENT.
        """
        allocation = request.allocation
        currency = (request.currency or "").upper()
        errors: List[str] = []
        if not is_iso_currency(currency):
            errors.append("Currency must be a valid 3-letter ISO code")
        if request.amount <= 0:
            errors.append("Advance amount must be greater than zero")
        if allocation.allocation_type == AllocationType.BILL:
            if not allocation.supplier_id:
                errors.append("Supplier ID required for bill settlement")
            if not allocation.ap_account_id:
                errors.append("AP account required for bill settlement")
        else:
            if not allocation.customer_id:
                errors.append("Customer ID required for invoice settlement")
            if not allocation.ar_account_id:
                errors.append("AR account required for invoice settlement")
        if errors:
            return await self._fail_advance(request, context, PaymentFailed(
                code=ErrorCode.PAYMENT_VALIDATION_FAILED,
                message="Advance application validation failed",
                errors=errors,
            ))

        fx_result = self.fx_resolver.resolve(self.settings.base_currency, currency, request.exchange_rate)
        if isinstance(fx_result, FXPolicyError):
            return await self._fail_advance(request, context, PaymentFailed(
                code=fx_result.code, message=fx_result.message, errors=[fx_result.message],
            ))

        outgoing = allocation.allocation_type == AllocationType.BILL
        key = AdvanceKey(
            tenant_id=request.tenant_id,
            company_id=request.company_id,
            party_type=PartyType.SUPPLIER if outgoing else PartyType.CUSTOMER,
            party_id=allocation.party_id,
            currency=currency,
        )
        amount = quantize(request.amount)
        try:
            change = await self.advance_ledger.debit(key, amount)
        except InsufficientAdvanceError as e:
            return await self._fail_advance(request, context, PaymentFailed(
                code=e.code, message=e.message, errors=[e.message], details=e.details,
            ))

        base = self.fx_resolver.to_base(amount, fx_result)
        document = allocation.document_number or str(allocation.document_id or "")
        if outgoing:
            lines = [
                JournalLine(account_id=allocation.ap_account_id, debit=base,
                            description=f"Prepayment applied to {document}", reference=document),
                JournalLine(account_id=change.account_id, credit=base,
                            description=f"Prepayment applied to {document}", reference=document),
            ]
        else:
            lines = [
                JournalLine(account_id=change.account_id, debit=base,
                            description=f"Advance applied to {document}", reference=document),
                JournalLine(account_id=allocation.ar_account_id, credit=base,
                            description=f"Advance applied to {document}", reference=document),
            ]

        journal = Journal(
            tenant_id=request.tenant_id,
            company_id=request.company_id,
            posting_date=request.posting_date,
            currency=self.settings.base_currency,
            journal_number=f"ADV-{request.reference_number}",
            description=f"Advance applied to {document}",
            voucher_type=VoucherType.ADVANCE,
            lines=lines,
            source_currency=currency,
            exchange_rate=fx_result.rate,
            source_reference=request.reference_number,
        )
        posting = await self.posting_service.validate_journal(journal, context)
        if isinstance(posting, PostingRejected):
            return await self._fail_advance(request, context, PaymentFailed(
                code=ErrorCode.JOURNAL_VALIDATION_FAILED,
                message=posting.message,
                errors=[posting.message],
                details={"rule": posting.code.value, **posting.details},
            ))

        try:
            posted = await self.posting_service.commit_accepted(posting, context, [change])
        except BusinessRuleError as e:
            return await self._fail_advance(request, context, PaymentFailed(
                code=e.code, message=e.message, errors=[e.message], details=e.details,
            ))

        totals = SettlementTotals(
            total_amount=amount,
            total_allocated=amount,
            total_bank_charges=ZERO,
            total_withholding=ZERO,
            remainder=ZERO,
            base_amount=base,
            fx_applied=fx_result.requires_conversion,
            exchange_rate=fx_result.rate,
        )
        await self._emit(AuditEvent(
            event_type=AuditEventType.ADVANCE_APPLIED,
            tenant_id=str(context.tenant_id),
            company_id=str(context.company_id),
            entity_type="advance",
            entity_id=str(key.party_id),
            user_id=str(context.user_id),
            payload={"journal_number": posted.journal_number, "amount": str(amount), "currency": currency},
        ))
        return PaymentProcessed(
            payment_number=request.reference_number,
            direction=PaymentDirection.PAYMENT if outgoing else PaymentDirection.RECEIPT,
            journal=posted,
            totals=totals,
            allocations_processed=1,
            advance_consumed=amount,
            advance_account_id=change.account_id,
            advance_party_type=key.party_type,
        )

    async def _fail_advance(
        self,
        request: AdvanceApplicationRequest,
        context: PostingContext,
        failed: PaymentFailed,
    ) -> PaymentFailed:
        await self._emit_payment_failed(request.reference_number, context, failed)
        return failed

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def generate_payment_number(
        company_code: str,
        sequence: int,
        payment_type: PaymentDirection = PaymentDirection.PAYMENT,
        year: Optional[int] = None,
    ) -> str:
        """PAY-<company>-<year>-<000001> for payments, REC-... for receipts."""
        prefix = "PAY" if payment_type == PaymentDirection.PAYMENT else "REC"
        year = year or datetime.now().year
        return f"{prefix}-{company_code}-{year}-{sequence:06d}"

    @staticmethod
    def calculate_payment_summary(payments: Sequence[PaymentRequest]) -> PaymentSummary:
        summary = PaymentSummary()
        for payment in payments:
            amount = quantize(payment.amount)
            summary.total_amount += amount
            if payment.allocations and payment.allocations[0].allocation_type == AllocationType.BILL:
                summary.bill_payments += 1
                summary.total_paid_out += amount
            else:
                summary.invoice_receipts += 1
                summary.total_received += amount
        return summary

    @staticmethod
    def validate_payment_allocations(
        allocations: Sequence[PaymentAllocation],
        outstanding: Mapping[str, Decimal],
    ) -> AllocationCheck:
        """
        Check allocations against outstanding document balances, keyed by
        document id or document number. Zero outstanding is an error;
        allocating more than is outstanding is a warning.
        """
        errors: List[str] = []
        warnings: List[str] = []
        for i, allocation in enumerate(allocations, 1):
            document = allocation.document_number or str(allocation.document_id)
            balance = outstanding.get(str(allocation.document_id)) if allocation.document_id else None
            if balance is None and allocation.document_number:
                balance = outstanding.get(allocation.document_number)
            balance = quantize(balance or ZERO)
            if balance <= 0:
                errors.append(f"Allocation {i}: document {document} has no outstanding balance")
            elif quantize(allocation.allocated_amount) > balance:
                warnings.append(
                    f"Allocation {i}: amount {quantize(allocation.allocated_amount)} exceeds "
                    f"outstanding balance {balance} for {document}"
                )
        return AllocationCheck(valid=not errors, errors=errors, warnings=warnings)

    async def _emit_payment_failed(self, payment_number: str, context: PostingContext, failed: PaymentFailed):
        await self._emit(AuditEvent(
            event_type=AuditEventType.PAYMENT_FAILED,
            tenant_id=str(context.tenant_id),
            company_id=str(context.company_id),
            entity_type="payment",
            entity_id=payment_number,
            user_id=str(context.user_id),
            payload={"code": failed.code.value, "message": failed.message, "errors": failed.errors},
        ))

    async def _emit(self, event: AuditEvent) -> None:
        if self.audit_sink is not None:
            await self.audit_sink.emit(event)
