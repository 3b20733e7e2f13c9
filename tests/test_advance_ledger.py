"""
Ledger Core - Advance / Prepayment Ledger Tests

Tests for the advance sub-ledger:
- Account resolution per party type
- Credits and debits with the no-overdraw rule
- Consuming advances against later documents
- Concurrent consumption of one balance
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import make_journal, seed_chart
from ledger_core.config import Settings
from ledger_core.repositories.memory import InMemoryLedgerRepository
from ledger_core.schemas.accounting import AdvanceKey, PartyType
from ledger_core.schemas.payment import (
    AdvanceApplicationRequest,
    AllocationType,
    PaymentAllocation,
    PaymentFailed,
    PaymentProcessed,
    PaymentRequest,
)
from ledger_core.services.advance_ledger_service import AdvanceLedgerService
from ledger_core.services.audit_service import AuditEventType
from ledger_core.utils.error_handling import (
    ErrorCode,
    InsufficientAdvanceError,
    ValidationFailedError,
)


def customer_key(context, customer, currency="MYR") -> AdvanceKey:
    return AdvanceKey(
        tenant_id=context.tenant_id,
        company_id=context.company_id,
        party_type=PartyType.CUSTOMER,
        party_id=customer.id,
        currency=currency,
    )


async def receive_with_advance(payment_service, context, chart, customer, bank, invoiced: str, received: str, number: str):
    """Post a receipt that leaves (received - invoiced) as a customer advance."""
    request = PaymentRequest(
        tenant_id=context.tenant_id,
        company_id=context.company_id,
        payment_number=number,
        payment_date=date(2025, 3, 1),
        method="BANK_TRANSFER",
        bank_account_id=bank.id,
        currency="MYR",
        amount=Decimal(received),
        allocations=[PaymentAllocation(
            allocation_type=AllocationType.INVOICE,
            document_number=f"INV-{number}",
            allocated_amount=Decimal(invoiced),
            customer_id=customer.id,
            ar_account_id=chart["1100"].id,
        )],
    )
    result = await payment_service.process_payment(request, context)
    assert isinstance(result, PaymentProcessed)
    return result


def application(context, chart, customer, amount: str, reference: str) -> AdvanceApplicationRequest:
    return AdvanceApplicationRequest(
        tenant_id=context.tenant_id,
        company_id=context.company_id,
        reference_number=reference,
        posting_date=date(2025, 3, 20),
        currency="MYR",
        amount=Decimal(amount),
        allocation=PaymentAllocation(
            allocation_type=AllocationType.INVOICE,
            document_number=f"INV-{reference}",
            allocated_amount=Decimal(amount),
            customer_id=customer.id,
            ar_account_id=chart["1100"].id,
        ),
    )


class TestAdvanceAccounts:
    """Tests for resolving the GL account behind an advance."""
    
    @pytest.mark.asyncio
    async def test_customer_advance_is_liability_account(self, advance_ledger, chart, context, customer):
        account_id = await advance_ledger.resolve_or_create(
            context.tenant_id, context.company_id, PartyType.CUSTOMER, customer.id, "myr"
        )
        
        assert account_id == chart["2300"].id
        assert await advance_ledger.get_balance(customer_key(context, customer)) == Decimal("0.00")
    
    @pytest.mark.asyncio
    async def test_supplier_prepayment_is_asset_account(self, advance_ledger, chart, context, supplier):
        account_id = await advance_ledger.resolve_or_create(
            context.tenant_id, context.company_id, PartyType.SUPPLIER, supplier.id, "MYR"
        )
        
        assert account_id == chart["1400"].id
    
    @pytest.mark.asyncio
    async def test_resolve_or_create_is_idempotent(self, advance_ledger, ledger_repo, chart, context, customer):
        first = await advance_ledger.resolve_or_create(
            context.tenant_id, context.company_id, PartyType.CUSTOMER, customer.id, "MYR"
        )
        second = await advance_ledger.resolve_or_create(
            context.tenant_id, context.company_id, PartyType.CUSTOMER, customer.id, "MYR"
        )
        
        assert first == second
        assert await ledger_repo.get_advance_balance(customer_key(context, customer)) is not None


class TestCreditDebit:
    """Tests for balance changes."""
    
    def test_credit_must_be_positive(self, advance_ledger, chart, context, customer):
        with pytest.raises(ValidationFailedError):
            advance_ledger.credit(customer_key(context, customer), Decimal("0"), chart["2300"].id)
    
    def test_credit_returns_positive_delta(self, advance_ledger, chart, context, customer):
        change = advance_ledger.credit(customer_key(context, customer), Decimal("12.345"), chart["2300"].id)
        
        assert change.delta == Decimal("12.35")
    
    @pytest.mark.asyncio
    async def test_debit_without_balance(self, advance_ledger, context, customer):
        with pytest.raises(InsufficientAdvanceError) as exc_info:
            await advance_ledger.debit(customer_key(context, customer), Decimal("10.00"))
        
        assert exc_info.value.code == ErrorCode.ADVANCE_INSUFFICIENT
    
    @pytest.mark.asyncio
    async def test_debit_beyond_balance_is_not_clamped(
        self, advance_ledger, payment_service, chart, context, customer, bank_myr
    ):
        await receive_with_advance(payment_service, context, chart, customer, bank_myr, "300.00", "350.00", "R-1")
        
        with pytest.raises(InsufficientAdvanceError):
            await advance_ledger.debit(customer_key(context, customer), Decimal("50.02"))
        
        change = await advance_ledger.debit(customer_key(context, customer), Decimal("50.00"))
        assert change.delta == Decimal("-50.00")
    
    @pytest.mark.asyncio
    async def test_balances_are_per_currency(
        self, advance_ledger, payment_service, chart, context, customer, bank_myr
    ):
        await receive_with_advance(payment_service, context, chart, customer, bank_myr, "100.00", "180.00", "R-2")
        
        assert await advance_ledger.get_balance(customer_key(context, customer, "MYR")) == Decimal("80.00")
        assert await advance_ledger.get_balance(customer_key(context, customer, "USD")) == Decimal("0.00")
    
    @pytest.mark.asyncio
    async def test_configured_tolerance_reaches_service_and_repository(self, tenant_id, company_id):
        tolerant = Settings(advance_negative_tolerance=Decimal("0.05"))
        repo = InMemoryLedgerRepository(settings=tolerant)
        chart = seed_chart(repo, tenant_id, company_id)
        service = AdvanceLedgerService(repo, settings=tolerant)
        key = AdvanceKey(
            tenant_id=tenant_id,
            company_id=company_id,
            party_type=PartyType.CUSTOMER,
            party_id=uuid4(),
            currency="MYR",
        )
        await repo.commit_posting(
            make_journal(tenant_id, company_id, "ADV-IN", [
                (chart["1010"].id, "50.00", "0"),
                (chart["2300"].id, "0", "50.00"),
            ]),
            [service.credit(key, Decimal("50.00"), chart["2300"].id)],
        )
        
        change = await service.debit(key, Decimal("50.04"))
        await repo.commit_posting(
            make_journal(tenant_id, company_id, "ADV-OUT", [
                (chart["2300"].id, "50.04", "0"),
                (chart["1100"].id, "0", "50.04"),
            ]),
            [change],
        )
        
        assert await service.get_balance(key) == Decimal("-0.04")


class TestAdvanceApplication:
    """Tests for consuming advances against later invoices."""
    
    @pytest.mark.asyncio
    async def test_apply_advance_to_invoice(
        self, payment_service, advance_ledger, audit_sink, chart, context, customer, bank_myr
    ):
        await receive_with_advance(payment_service, context, chart, customer, bank_myr, "300.00", "350.00", "R-3")
        
        result = await payment_service.apply_advance(application(context, chart, customer, "30.00", "A-1"), context)
        
        assert isinstance(result, PaymentProcessed)
        assert result.advance_consumed == Decimal("30.00")
        journal = result.journal
        assert journal.journal_number == "ADV-A-1"
        advance_line = next(line for line in journal.lines if line.account_id == chart["2300"].id)
        ar_line = next(line for line in journal.lines if line.account_id == chart["1100"].id)
        assert advance_line.debit == Decimal("30.00")
        assert ar_line.credit == Decimal("30.00")
        assert await advance_ledger.get_balance(customer_key(context, customer)) == Decimal("20.00")
        assert len(audit_sink.of_type(AuditEventType.ADVANCE_APPLIED)) == 1
    
    @pytest.mark.asyncio
    async def test_apply_more_than_available(
        self, payment_service, advance_ledger, chart, context, customer, bank_myr
    ):
        await receive_with_advance(payment_service, context, chart, customer, bank_myr, "300.00", "320.00", "R-4")
        
        result = await payment_service.apply_advance(application(context, chart, customer, "25.00", "A-2"), context)
        
        assert isinstance(result, PaymentFailed)
        assert result.code == ErrorCode.ADVANCE_INSUFFICIENT
        assert await advance_ledger.get_balance(customer_key(context, customer)) == Decimal("20.00")
    
    @pytest.mark.asyncio
    async def test_apply_to_bill_consumes_prepayment(
        self, payment_service, advance_ledger, chart, context, supplier, bank_myr
    ):
        prepay = PaymentRequest(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            payment_number="P-5",
            payment_date=date(2025, 3, 1),
            method="CHECK",
            bank_account_id=bank_myr.id,
            currency="MYR",
            amount=Decimal("500.00"),
            allocations=[PaymentAllocation(
                allocation_type=AllocationType.BILL,
                document_number="BILL-5",
                allocated_amount=Decimal("100.00"),
                supplier_id=supplier.id,
                ap_account_id=chart["2000"].id,
            )],
        )
        await payment_service.process_payment(prepay, context)
        request = AdvanceApplicationRequest(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            reference_number="A-5",
            posting_date=date(2025, 3, 20),
            currency="MYR",
            amount=Decimal("400.00"),
            allocation=PaymentAllocation(
                allocation_type=AllocationType.BILL,
                document_number="BILL-6",
                allocated_amount=Decimal("400.00"),
                supplier_id=supplier.id,
                ap_account_id=chart["2000"].id,
            ),
        )
        
        result = await payment_service.apply_advance(request, context)
        
        assert isinstance(result, PaymentProcessed)
        prepayment_line = next(line for line in result.journal.lines if line.account_id == chart["1400"].id)
        assert prepayment_line.credit == Decimal("400.00")
        key = AdvanceKey(
            tenant_id=context.tenant_id, company_id=context.company_id,
            party_type=PartyType.SUPPLIER, party_id=supplier.id, currency="MYR",
        )
        assert await advance_ledger.get_balance(key) == Decimal("0.00")
    
    @pytest.mark.asyncio
    async def test_concurrent_consumers_cannot_overdraw(
        self, payment_service, advance_ledger, chart, context, customer, bank_myr
    ):
        await receive_with_advance(payment_service, context, chart, customer, bank_myr, "10.00", "110.00", "R-6")
        
        results = await asyncio.gather(*[
            payment_service.apply_advance(application(context, chart, customer, "40.00", f"A-6{i}"), context)
            for i in range(3)
        ])
        
        processed = [r for r in results if isinstance(r, PaymentProcessed)]
        failed = [r for r in results if isinstance(r, PaymentFailed)]
        assert len(processed) == 2
        assert len(failed) == 1
        assert failed[0].code == ErrorCode.ADVANCE_INSUFFICIENT
        assert await advance_ledger.get_balance(customer_key(context, customer)) == Decimal("20.00")
    
    @pytest.mark.asyncio
    async def test_application_validation(self, payment_service, chart, context, customer):
        request = application(context, chart, customer, "0", "A-7")
        request.allocation.customer_id = None
        
        result = await payment_service.apply_advance(request, context)
        
        assert result.code == ErrorCode.PAYMENT_VALIDATION_FAILED
        assert "Advance amount must be greater than zero" in result.errors
        assert "Customer ID required for invoice settlement" in result.errors
