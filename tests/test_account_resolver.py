"""
Ledger Core - Account Resolution Tests

Tests for configured system accounts, chart structure checks and the
logging audit sink.
"""

import json
import logging
import pytest
from uuid import uuid4

from conftest import seed_chart
from ledger_core.config import Settings
from ledger_core.schemas.accounting import Account, AccountType, NormalBalance, PartyType
from ledger_core.services.account_resolver import AccountRegistry, AccountResolver
from ledger_core.services.audit_service import AuditEvent, AuditEventType, LoggingAuditSink
from ledger_core.utils.error_handling import AccountNotConfiguredError, ErrorCode
from ledger_core.utils.logging_config import configure_logging


class TestAccountResolver:
    """Tests for resolving system accounts by configured code."""
    
    @pytest.mark.asyncio
    async def test_resolves_configured_codes(self, account_resolver, chart, tenant_id, company_id):
        assert (await account_resolver.withholding_payable(tenant_id, company_id)).code == "2150"
        assert (await account_resolver.withholding_clearing(tenant_id, company_id)).code == "1450"
        assert (await account_resolver.fx_rounding(tenant_id, company_id)).code == "7900"
        assert (await account_resolver.advance_account(tenant_id, company_id, PartyType.CUSTOMER)).code == "2300"
        assert (await account_resolver.advance_account(tenant_id, company_id, PartyType.SUPPLIER)).code == "1400"
    
    @pytest.mark.asyncio
    async def test_missing_account(self, ledger_repo, chart, tenant_id, company_id):
        resolver = AccountResolver(ledger_repo, settings=Settings(fx_rounding_account_code="7999"))
        
        with pytest.raises(AccountNotConfiguredError) as exc_info:
            await resolver.fx_rounding(tenant_id, company_id)
        
        assert exc_info.value.code == ErrorCode.ACCOUNT_NOT_CONFIGURED
        assert exc_info.value.details["account_code"] == "7999"
    
    @pytest.mark.asyncio
    async def test_inactive_account_is_not_resolved(self, ledger_repo, chart, tenant_id, company_id):
        resolver = AccountResolver(ledger_repo, settings=Settings(fx_rounding_account_code="1900"))
        
        with pytest.raises(AccountNotConfiguredError):
            await resolver.fx_rounding(tenant_id, company_id)
    
    @pytest.mark.asyncio
    async def test_accounts_are_company_scoped(self, account_resolver, ledger_repo, tenant_id):
        other_company = uuid4()
        
        with pytest.raises(AccountNotConfiguredError):
            await account_resolver.fx_rounding(tenant_id, other_company)
        
        seed_chart(ledger_repo, tenant_id, other_company)
        assert (await account_resolver.fx_rounding(tenant_id, other_company)).company_id == other_company


class TestAccountRegistry:
    """Tests for chart of accounts hierarchy validation."""
    
    def _account(self, tenant_id, company_id, code, account_type=AccountType.ASSET, **fields):
        return Account(
            tenant_id=tenant_id,
            company_id=company_id,
            code=code,
            name=f"Account {code}",
            account_type=account_type,
            normal_balance=NormalBalance.DEBIT,
            **fields,
        )
    
    def test_valid_chart(self, chart):
        assert AccountRegistry.validate_hierarchy(list(chart.values())) == []
    
    def test_duplicate_codes(self, tenant_id, company_id):
        accounts = [
            self._account(tenant_id, company_id, "1010"),
            self._account(tenant_id, company_id, "1010"),
            self._account(tenant_id, uuid4(), "1010"),
        ]
        
        errors = AccountRegistry.validate_hierarchy(accounts)
        
        assert len(errors) == 1
        assert "used 2 times" in errors[0]
    
    def test_parent_rules(self, tenant_id, company_id):
        header = self._account(tenant_id, company_id, "1000", is_header=True)
        wrong_type = self._account(tenant_id, company_id, "2010", AccountType.LIABILITY, parent_id=header.id)
        orphan = self._account(tenant_id, company_id, "1020", parent_id=uuid4())
        foreign_parent = self._account(tenant_id, uuid4(), "1030")
        cross_company = self._account(tenant_id, company_id, "1040", parent_id=foreign_parent.id)
        
        errors = AccountRegistry.validate_hierarchy([header, wrong_type, orphan, foreign_parent, cross_company])
        
        assert len(errors) == 3
        assert any("incompatible with parent 1000" in e for e in errors)
        assert any("1020: parent" in e and "not found" in e for e in errors)
        assert any("belongs to another company" in e for e in errors)


class TestLoggingAuditSink:
    """Tests for the logging audit sink."""
    
    @pytest.mark.asyncio
    async def test_events_are_logged_as_json(self, caplog):
        sink = LoggingAuditSink()
        event = AuditEvent(
            event_type=AuditEventType.POSTING_FAILED,
            entity_type="journal",
            payload={"code": "UNBALANCED_JOURNAL"},
        )
        
        with caplog.at_level(logging.INFO, logger="ledger_core.audit"):
            await sink.emit(event)
        
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert json.loads(record.getMessage())["payload"]["code"] == "UNBALANCED_JOURNAL"
    
    def test_configure_logging_quiets_sql_echo(self):
        configure_logging("debug")
        
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
