"""
Ledger Core - Journal Posting Tests

Tests for the journal validator and posting:
- Double-entry checks (balance, line amounts, currency)
- Account checks (existence, scope, active, header)
- Segregation of duties and approval flags
- Duplicate numbers, reversals and audit events
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import make_journal, seed_chart
from ledger_core.config import Settings
from ledger_core.schemas.accounting import (
    JournalLine,
    PostingAccepted,
    PostingContext,
    PostingRejected,
    VoucherType,
)
from ledger_core.services.audit_service import AuditEventType
from ledger_core.services.posting_service import PostingService
from ledger_core.services.sod import StaticRoleSoDOracle
from ledger_core.utils.error_handling import ErrorCode


class TestDoubleEntryValidation:
    """Tests for debit/credit invariants."""
    
    @pytest.mark.asyncio
    async def test_balanced_journal_accepted(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0001", [
            (chart["1010"].id, "1000.00", "0"),
            (chart["3000"].id, "0", "1000.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert isinstance(result, PostingAccepted)
        assert result.total_debit == Decimal("1000.00")
        assert result.total_credit == Decimal("1000.00")
        assert result.requires_approval is False
    
    @pytest.mark.asyncio
    async def test_unbalanced_journal_rejected(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0002", [
            (chart["1010"].id, "1000.00", "0"),
            (chart["3000"].id, "0", "990.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert isinstance(result, PostingRejected)
        assert result.code == ErrorCode.UNBALANCED_JOURNAL
        assert result.details["difference"] == "10.00"
    
    @pytest.mark.asyncio
    async def test_sub_cent_difference_rounds_away(self, posting_service, chart, context):
        """Test that amounts are quantized to 2 places before the balance check."""
        journal = make_journal(context.tenant_id, context.company_id, "JV-0003", [
            (chart["1010"].id, "100.004", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert isinstance(result, PostingAccepted)
        assert result.journal.lines[0].debit == Decimal("100.00")
    
    @pytest.mark.asyncio
    async def test_no_lines(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0004", [])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.NO_LINES
    
    @pytest.mark.asyncio
    async def test_line_with_both_sides(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0005", [
            (chart["1010"].id, "50.00", "50.00"),
            (chart["3000"].id, "0", "0.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.INVALID_LINE_AMOUNTS
        assert result.details["line_number"] == 1
    
    @pytest.mark.asyncio
    async def test_zero_line(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0006", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
            (chart["6000"].id, "0", "0"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.ZERO_AMOUNTS
        assert result.details["line_number"] == 3
    
    @pytest.mark.asyncio
    async def test_negative_amount(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0007", [
            (chart["1010"].id, "-100.00", "0"),
            (chart["3000"].id, "0", "-100.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.NEGATIVE_AMOUNT
    
    @pytest.mark.asyncio
    async def test_invalid_currency(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0008", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ], currency="RINGGIT")
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.INVALID_CURRENCY
    
    @pytest.mark.asyncio
    async def test_too_many_lines(self, ledger_repo, sod_oracle, chart, context):
        service = PostingService(ledger_repo, sod_oracle, settings=Settings(max_journal_lines=2))
        journal = make_journal(context.tenant_id, context.company_id, "JV-0009", [
            (chart["1010"].id, "100.00", "0"),
            (chart["1100"].id, "100.00", "0"),
            (chart["3000"].id, "0", "200.00"),
        ])
        
        result = await service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.TOO_MANY_LINES


class TestAccountValidation:
    """Tests for per-line account checks."""
    
    @pytest.mark.asyncio
    async def test_unknown_account(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0101", [
            (uuid4(), "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.ACCOUNT_NOT_FOUND
    
    @pytest.mark.asyncio
    async def test_inactive_account(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0102", [
            (chart["1900"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.ACCOUNT_INACTIVE
    
    @pytest.mark.asyncio
    async def test_header_account(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0103", [
            (chart["1000"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.HEADER_ACCOUNT
    
    @pytest.mark.asyncio
    async def test_account_of_other_company(self, posting_service, ledger_repo, chart, context):
        other = seed_chart(ledger_repo, context.tenant_id, uuid4())
        journal = make_journal(context.tenant_id, context.company_id, "JV-0104", [
            (other["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.ACCOUNT_SCOPE_MISMATCH
    
    @pytest.mark.asyncio
    async def test_journal_for_other_company(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, uuid4(), "JV-0105", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert result.code == ErrorCode.ACCOUNT_SCOPE_MISMATCH
    
    @pytest.mark.asyncio
    async def test_foreign_currency_account_is_warning_only(self, posting_service, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0106", [
            (chart["1020"].id, "420.00", "0"),
            (chart["3000"].id, "0", "420.00"),
        ])
        
        result = await posting_service.validate_journal(journal, context)
        
        assert isinstance(result, PostingAccepted)
        assert any("USD" in warning for warning in result.warnings)


class TestSegregationOfDuties:
    """Tests for SoD checks."""
    
    @pytest.mark.asyncio
    async def test_viewer_cannot_post(self, posting_service, chart, context):
        viewer = context.model_copy(update={"role": "viewer"})
        journal = make_journal(context.tenant_id, context.company_id, "JV-0201", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.post_journal(journal, viewer)
        
        assert result.code == ErrorCode.SOD_VIOLATION
        assert result.details["role"] == "viewer"
    
    @pytest.mark.asyncio
    async def test_clerk_limited_to_own_voucher_type(self, posting_service, chart, context):
        clerk = context.model_copy(update={"role": "payables_clerk"})
        lines = [(chart["2000"].id, "100.00", "0"), (chart["1010"].id, "0", "100.00")]
        
        manual = await posting_service.validate_journal(
            make_journal(context.tenant_id, context.company_id, "JV-0202", lines), clerk
        )
        payment = await posting_service.validate_journal(
            make_journal(context.tenant_id, context.company_id, "PV-0202", lines,
                         voucher_type=VoucherType.PAYMENT), clerk
        )
        
        assert manual.code == ErrorCode.SOD_VIOLATION
        assert isinstance(payment, PostingAccepted)
    
    @pytest.mark.asyncio
    async def test_unknown_role_denied(self, posting_service, chart, context):
        stranger = context.model_copy(update={"role": "intern"})
        journal = make_journal(context.tenant_id, context.company_id, "JV-0203", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.validate_journal(journal, stranger)
        
        assert result.code == ErrorCode.SOD_VIOLATION
    
    @pytest.mark.asyncio
    async def test_approval_flag_surfaced(self, ledger_repo, chart, context):
        oracle = StaticRoleSoDOracle(approval_required_roles=["accountant"], approvers=["finance_manager"])
        service = PostingService(ledger_repo, oracle)
        journal = make_journal(context.tenant_id, context.company_id, "JV-0204", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await service.post_journal(journal, context)
        
        assert isinstance(result, PostingAccepted)
        assert result.requires_approval is True
        assert result.approver_roles == ["finance_manager"]


class TestPosting:
    """Tests for committing journals."""
    
    @pytest.mark.asyncio
    async def test_validate_never_persists(self, posting_service, ledger_repo, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0301", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        await posting_service.validate_journal(journal, context)
        
        assert await ledger_repo.journal_number_exists(context.tenant_id, context.company_id, "JV-0301") is False
    
    @pytest.mark.asyncio
    async def test_post_persists_journal(self, posting_service, ledger_repo, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0302", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        
        result = await posting_service.post_journal(journal, context)
        stored = await ledger_repo.get_journal(journal.id)
        
        assert isinstance(result, PostingAccepted)
        assert stored is not None
        assert stored.posted_by_id == context.user_id
        assert stored.posted_at is not None
        assert stored.total_debit == stored.total_credit == Decimal("100.00")
    
    @pytest.mark.asyncio
    async def test_duplicate_number_rejected(self, posting_service, chart, context):
        lines = [(chart["1010"].id, "100.00", "0"), (chart["3000"].id, "0", "100.00")]
        
        first = await posting_service.post_journal(
            make_journal(context.tenant_id, context.company_id, "JV-0303", lines), context
        )
        second = await posting_service.post_journal(
            make_journal(context.tenant_id, context.company_id, "JV-0303", lines), context
        )
        
        assert isinstance(first, PostingAccepted)
        assert second.code == ErrorCode.DUPLICATE_JOURNAL
    
    @pytest.mark.asyncio
    async def test_audit_events(self, posting_service, audit_sink, chart, context):
        good = make_journal(context.tenant_id, context.company_id, "JV-0304", [
            (chart["1010"].id, "100.00", "0"),
            (chart["3000"].id, "0", "100.00"),
        ])
        bad = make_journal(context.tenant_id, context.company_id, "JV-0305", [
            (chart["1010"].id, "100.00", "0"),
        ])
        
        await posting_service.post_journal(good, context)
        await posting_service.post_journal(bad, context)
        
        succeeded = audit_sink.of_type(AuditEventType.POSTING_SUCCEEDED)
        failed = audit_sink.of_type(AuditEventType.POSTING_FAILED)
        assert [e.payload["journal_number"] for e in succeeded] == ["JV-0304"]
        assert failed[0].payload["code"] == ErrorCode.UNBALANCED_JOURNAL.value


class TestReversal:
    """Tests for reversing posted journals."""
    
    @pytest.mark.asyncio
    async def test_reverse_swaps_sides(self, posting_service, ledger_repo, chart, context):
        journal = make_journal(context.tenant_id, context.company_id, "JV-0401", [
            (chart["6000"].id, "250.00", "0"),
            (chart["1010"].id, "0", "250.00"),
        ])
        await posting_service.post_journal(journal, context)
        
        result = await posting_service.reverse_journal(journal.id, context, date(2025, 3, 31), "Posted twice")
        
        assert isinstance(result, PostingAccepted)
        reversal = result.journal
        assert reversal.journal_number == "REV-JV-0401"
        assert reversal.voucher_type == VoucherType.REVERSAL
        assert reversal.reversal_of_id == journal.id
        assert reversal.lines[0].credit == Decimal("250.00")
        assert reversal.lines[1].debit == Decimal("250.00")
        assert "Posted twice" in reversal.description
    
    @pytest.mark.asyncio
    async def test_reverse_unknown_journal(self, posting_service, context):
        result = await posting_service.reverse_journal(uuid4(), context, date(2025, 3, 31))
        
        assert isinstance(result, PostingRejected)
