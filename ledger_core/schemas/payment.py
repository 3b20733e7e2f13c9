"""
Ledger Core - Payment Schemas

Request and result schemas for the payment / settlement processor.
Request fields are deliberately permissive: business rules are checked by
the processor so that every violation is reported, not just the first one
pydantic would stop at.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from ledger_core.schemas.accounting import AdvanceBalanceChange, Journal, PartyType, PostingAccepted
from ledger_core.utils.error_handling import ErrorCode


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    CHECK = "CHECK"
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    OTHER = "OTHER"


class AllocationType(str, Enum):
    BILL = "BILL"
    INVOICE = "INVOICE"


class PaymentDirection(str, Enum):
    PAYMENT = "payment"   # outgoing, settles bills
    RECEIPT = "receipt"   # incoming, settles invoices


class PaymentAllocation(BaseModel):
    allocation_type: AllocationType
    document_id: Optional[UUID] = None
    document_number: Optional[str] = None
    allocated_amount: Decimal
    supplier_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    ap_account_id: Optional[UUID] = None
    ar_account_id: Optional[UUID] = None

    @property
    def party_id(self) -> Optional[UUID]:
        if self.allocation_type == AllocationType.BILL:
            return self.supplier_id
        return self.customer_id

    @property
    def control_account_id(self) -> Optional[UUID]:
        if self.allocation_type == AllocationType.BILL:
            return self.ap_account_id
        return self.ar_account_id


class BankCharge(BaseModel):
    amount: Decimal
    account_id: UUID
    description: Optional[str] = None


class WithholdingTax(BaseModel):
    """Tax withheld from the payment. Accounts resolve from configuration when omitted."""
    amount: Decimal
    tax_code: Optional[str] = None
    description: Optional[str] = None
    payable_account_id: Optional[UUID] = None
    clearing_account_id: Optional[UUID] = None


class PaymentRequest(BaseModel):
    tenant_id: UUID
    company_id: UUID
    payment_number: str
    payment_date: date
    method: str
    bank_account_id: UUID
    currency: str
    amount: Decimal
    exchange_rate: Optional[Decimal] = None
    customer_id: Optional[UUID] = None
    supplier_id: Optional[UUID] = None
    allocations: List[PaymentAllocation] = Field(default_factory=list)
    bank_charges: List[BankCharge] = Field(default_factory=list)
    withholding_taxes: List[WithholdingTax] = Field(default_factory=list)
    reference: Optional[str] = None
    description: Optional[str] = None


class AdvanceApplicationRequest(BaseModel):
    """Consume an existing advance/prepayment against an open document."""
    tenant_id: UUID
    company_id: UUID
    reference_number: str
    posting_date: date
    currency: str
    amount: Decimal
    exchange_rate: Optional[Decimal] = None
    allocation: PaymentAllocation


class SettlementTotals(BaseModel):
    """Per-document figures in transaction currency plus base equivalents."""
    total_amount: Decimal
    total_allocated: Decimal
    total_bank_charges: Decimal
    total_withholding: Decimal
    remainder: Decimal
    base_amount: Decimal
    fx_applied: bool
    exchange_rate: Decimal


class SettlementPlan(BaseModel):
    """Balanced, validated journal plus the advance change to commit with it."""
    status: Literal["planned"] = "planned"
    payment_number: str
    direction: PaymentDirection
    posting: PostingAccepted
    totals: SettlementTotals
    allocations_processed: int
    advance_change: Optional[AdvanceBalanceChange] = None
    advance_party_type: Optional[PartyType] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def journal(self) -> Journal:
        return self.posting.journal


class PaymentProcessed(BaseModel):
    status: Literal["processed"] = "processed"
    payment_number: str
    direction: PaymentDirection
    journal: Journal
    totals: SettlementTotals
    allocations_processed: int
    advance_applied: Decimal = Decimal("0.00")
    advance_consumed: Decimal = Decimal("0.00")
    advance_account_id: Optional[UUID] = None
    advance_party_type: Optional[PartyType] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def fx_applied(self) -> bool:
        return self.totals.fx_applied


class PaymentFailed(BaseModel):
    status: Literal["failed"] = "failed"
    code: ErrorCode
    message: str
    errors: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)


PaymentResult = Annotated[Union[PaymentProcessed, PaymentFailed], Field(discriminator="status")]


class PaymentSummary(BaseModel):
    bill_payments: int = 0
    invoice_receipts: int = 0
    total_amount: Decimal = Decimal("0.00")
    total_paid_out: Decimal = Decimal("0.00")
    total_received: Decimal = Decimal("0.00")


class AllocationCheck(BaseModel):
    """Outcome of checking allocations against outstanding document balances."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
