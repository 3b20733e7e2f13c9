"""
Ledger Core - Multi-Entity Consolidation Service

Consolidation runs for an entity group and period:
- Full consolidation for subsidiaries
- Proportional consolidation for joint ventures
- Equity method for associates (excluded from line-by-line)
- Currency translation (current rate, temporal, historical) with CTA
- Elimination of matched intercompany transactions and approved manual entries
- Minority interest calculations

Runs follow Pending -> Running -> Completed | Failed. Starting a run
schedules it as a background task; callers poll get_run. Missing or
out-of-period entity data is counted on the run and the run continues;
structural errors (unknown group or entity) fail the run.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

from ledger_core.config import Settings, settings as default_settings
from ledger_core.repositories.base import ConsolidationRepository
from ledger_core.schemas.accounting import Account, AccountSubType, AccountType
from ledger_core.schemas.consolidation import (
    ApprovalStatus,
    ConsolidatedTrialBalance,
    ConsolidatedTrialBalanceRow,
    ConsolidationEntity,
    ConsolidationGroup,
    ConsolidationMethod,
    ConsolidationRun,
    EliminationEntry,
    EliminationType,
    EntityContribution,
    IntercompanyTransaction,
    IntercompanyTransactionType,
    MinorityInterest,
    RUN_TRANSITIONS,
    RunStatus,
    TranslationMethod,
)
from ledger_core.schemas.reports import TrialBalanceOptions
from ledger_core.services.audit_service import AuditEvent, AuditEventType, AuditSink
from ledger_core.services.reports_service import ReportsService
from ledger_core.utils.error_handling import (
    ConsolidationError,
    EntityDataError,
    ErrorCode,
    InvalidRunTransitionError,
    LedgerError,
)
from ledger_core.utils.money import quantize

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Balance sheet items carried at the closing rate under the temporal method
MONETARY_SUB_TYPES = {
    AccountSubType.CASH,
    AccountSubType.BANK,
    AccountSubType.ACCOUNTS_RECEIVABLE,
    AccountSubType.WHT_RECEIVABLE,
    AccountSubType.INTERCOMPANY_RECEIVABLE,
    AccountSubType.ACCOUNTS_PAYABLE,
    AccountSubType.ACCRUED_EXPENSE,
    AccountSubType.CUSTOMER_ADVANCE,
    AccountSubType.WHT_PAYABLE,
    AccountSubType.INTERCOMPANY_PAYABLE,
    AccountSubType.LOAN,
    AccountSubType.OTHER_CURRENT_LIABILITY,
    AccountSubType.OTHER_NON_CURRENT_LIABILITY,
}

# Progress milestones
ENTITY_PHASE_END = 80
ELIMINATION_PHASE = 90


class _AccountTotals:
    """Accumulator for one consolidated account code."""

    def __init__(self, name: str, account_type: AccountType):
        self.name = name
        self.account_type = account_type
        self.debit = ZERO
        self.credit = ZERO
        self.elimination_debit = ZERO
        self.elimination_credit = ZERO
        self.contributors: List[UUID] = []


class ConsolidationService:
    """Service for multi-entity consolidation runs."""

    def __init__(
        self,
        repository: ConsolidationRepository,
        reports_service: ReportsService,
        audit_sink: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.reports_service = reports_service
        self.audit_sink = audit_sink
        self.settings = settings or default_settings
        self._tasks: Dict[UUID, asyncio.Task] = {}

    # =========================================================================
    # RUN LIFECYCLE
    # =========================================================================

    async def create_run(
        self,
        group_id: UUID,
        period_start: date,
        period_end: date,
        requested_by_id: Optional[UUID] = None,
    ) -> ConsolidationRun:
        """Record a Pending run. Nothing is computed until the run is started."""
        group = await self.repository.get_group(group_id)
        if group is None:
            raise ConsolidationError(
                f"Consolidation group {group_id} not found",
                code=ErrorCode.CONSOLIDATION_GROUP_NOT_FOUND,
                details={"group_id": str(group_id)},
            )
        run = await self.repository.create_run(ConsolidationRun(
            group_id=group_id,
            period_start=period_start,
            period_end=period_end,
            requested_by_id=requested_by_id,
        ))
        logger.info(f"Created consolidation run {run.id} for group {group.name} ({period_start}..{period_end})")
        return run

    async def get_run(self, run_id: UUID) -> ConsolidationRun:
        run = await self.repository.get_run(run_id)
        if run is None:
            raise ConsolidationError(
                f"Consolidation run {run_id} not found",
                code=ErrorCode.CONSOLIDATION_RUN_NOT_FOUND,
                details={"run_id": str(run_id)},
            )
        return run

    async def start_run(self, run_id: UUID) -> ConsolidationRun:
        """
        Move a Pending run to Running and schedule it in the background.

        Returns immediately with the Running record. Raises RunConflictError
        when another run for the same group and period is already Running.
        """
        run = await self._claim(run_id)
        task = asyncio.create_task(self._run(run))
        self._tasks[run.id] = task
        task.add_done_callback(lambda done: self._on_run_done(run.id, done))
        return run

    async def execute_run(self, run_id: UUID) -> ConsolidationRun:
        """Start a Pending run and wait until it reaches a terminal state."""
        run = await self._claim(run_id)
        return await self._run(run)

    async def wait_for_run(self, run_id: UUID) -> ConsolidationRun:
        """Wait for a run scheduled by start_run, then return its final record."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.get_run(run_id)

    def _on_run_done(self, run_id: UUID, task: asyncio.Task) -> None:
        self._tasks.pop(run_id, None)
        if task.cancelled():
            logger.warning(f"Consolidation run {run_id} was cancelled while running")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Consolidation run {run_id} stopped before reaching a terminal state: "
                f"{type(error).__name__} - {error}",
                exc_info=error,
            )

    async def _claim(self, run_id: UUID) -> ConsolidationRun:
        run = await self.get_run(run_id)
        self._check_transition(run, RunStatus.RUNNING)
        claimed = await self.repository.claim_running(run)
        await self._emit_transition(claimed, RunStatus.PENDING, RunStatus.RUNNING)
        return claimed

    def _check_transition(self, run: ConsolidationRun, to_status: RunStatus) -> None:
        if to_status not in RUN_TRANSITIONS[run.status]:
            raise InvalidRunTransitionError(run.id, run.status.value, to_status.value)

    async def _finish(self, run: ConsolidationRun, to_status: RunStatus) -> ConsolidationRun:
        self._check_transition(run, to_status)
        from_status = run.status
        run.status = to_status
        run.completed_at = datetime.now(timezone.utc)
        if to_status == RunStatus.COMPLETED:
            run.progress_percentage = 100
        saved = await self.repository.save_run(run)
        await self._emit_transition(saved, from_status, to_status)
        return saved

    async def _run(self, run: ConsolidationRun) -> ConsolidationRun:
        try:
            await self._consolidate(run)
        except LedgerError as e:
            logger.error(f"Consolidation run {run.id} failed: {e.code.value} - {e.message}")
            run.failure_reason = e.message
            run.error_details.append({"code": e.code.value, "message": e.message, **e.details})
            run.error_count += 1
            return await self._finish(run, RunStatus.FAILED)
        except Exception as e:
            logger.exception(f"Consolidation run {run.id} failed unexpectedly")
            run.failure_reason = f"{type(e).__name__}: {e}"
            run.error_count += 1
            return await self._finish(run, RunStatus.FAILED)

        logger.info(
            f"Consolidation run {run.id} completed: {run.entities_processed} entities, "
            f"{run.eliminations_created} eliminations, {run.error_count} error(s)"
        )
        return await self._finish(run, RunStatus.COMPLETED)

    async def _progress(self, run: ConsolidationRun, percentage: int) -> None:
        run.progress_percentage = max(run.progress_percentage, min(percentage, 99))
        await self.repository.save_run(run)

    # =========================================================================
    # CONSOLIDATION
    # =========================================================================

    async def _consolidate(self, run: ConsolidationRun) -> None:
        group = await self.repository.get_group(run.group_id)
        if group is None:
            raise ConsolidationError(
                f"Consolidation group {run.group_id} not found",
                code=ErrorCode.CONSOLIDATION_GROUP_NOT_FOUND,
                details={"group_id": str(run.group_id)},
            )

        entities = await self.repository.list_entities(group.id)
        if not entities:
            raise ConsolidationError(
                f"Consolidation group {group.name} has no entities",
                code=ErrorCode.CONSOLIDATION_ENTITY_NOT_FOUND,
                details={"group_id": str(group.id)},
            )
        entities_by_id = {e.id: e for e in entities}

        transactions = await self.repository.list_intercompany_transactions(
            group.id, run.period_start, run.period_end
        )
        stored_eliminations = await self.repository.list_elimination_entries(group.id, run.period_end)
        self._check_references(transactions, stored_eliminations, entities_by_id)

        consolidated: Dict[str, _AccountTotals] = {}
        catalog: Dict[str, Tuple[str, AccountType]] = {}
        contributions: List[EntityContribution] = []
        minority: List[MinorityInterest] = []
        included: Set[UUID] = set()
        factors: Dict[UUID, Decimal] = {}
        cta_total = ZERO
        complete = 0

        # ===========================================
        # ENTITY PHASE
        # ===========================================
        for index, entity in enumerate(entities, 1):
            try:
                contribution, nci = await self._consolidate_entity(
                    entity, group, run, consolidated, catalog
                )
            except EntityDataError as e:
                logger.warning(f"Run {run.id}: entity {entity.name} skipped - {e.message}")
                run.error_count += 1
                run.error_details.append({
                    "entity_id": str(entity.id),
                    "company_id": str(entity.company_id),
                    "code": e.code.value,
                    "message": e.message,
                })
            else:
                complete += 1
                contributions.append(contribution)
                cta_total += contribution.translation_adjustment
                if nci is not None:
                    minority.append(nci)
                if entity.consolidation_method != ConsolidationMethod.EQUITY:
                    included.add(entity.id)
                    factors[entity.id] = self._factor(entity)
            run.entities_processed = index
            await self._progress(run, int(ENTITY_PHASE_END * index / len(entities)))

        # ===========================================
        # ELIMINATION PHASE
        # ===========================================
        automatic, unmatched = self._automatic_eliminations(
            run, group, transactions, included, factors
        )
        approved_manual = []
        for entry in stored_eliminations:
            if entry.is_automatic:
                continue
            if entry.approval_status == ApprovalStatus.APPROVED:
                approved_manual.append(entry)
            else:
                logger.info(f"Run {run.id}: manual elimination {entry.id} skipped ({entry.approval_status.value})")

        eliminations = automatic + approved_manual
        for entry in eliminations:
            self._apply_elimination(entry, consolidated, catalog)

        if automatic:
            await self.repository.save_elimination_entries(automatic)
        run.eliminations_created = len(automatic)
        await self._progress(run, ELIMINATION_PHASE)

        # ===========================================
        # RESULT
        # ===========================================
        rows = []
        for code in sorted(consolidated):
            totals = consolidated[code]
            rows.append(ConsolidatedTrialBalanceRow(
                account_code=code,
                account_name=totals.name,
                account_type=totals.account_type,
                pre_elimination_debit=totals.debit,
                pre_elimination_credit=totals.credit,
                elimination_debit=totals.elimination_debit,
                elimination_credit=totals.elimination_credit,
                post_elimination_balance=(
                    totals.debit - totals.credit + totals.elimination_debit - totals.elimination_credit
                ),
                contributing_entities=totals.contributors,
            ))

        total_debits = sum((r.pre_elimination_debit + r.elimination_debit for r in rows), ZERO)
        total_credits = sum((r.pre_elimination_credit + r.elimination_credit for r in rows), ZERO)
        is_balanced = abs(total_debits - total_credits) <= self.settings.balance_tolerance
        if not is_balanced:
            logger.error(
                f"Run {run.id}: consolidated trial balance out of balance by {total_debits - total_credits}"
            )

        self._assign_contribution_percentages(contributions)

        run.accounts_processed = sum(len(t.contributors) for t in consolidated.values())
        run.total_amount_consolidated = sum((r.pre_elimination_debit for r in rows), ZERO)
        run.data_completeness = (Decimal(complete) / Decimal(len(entities))).quantize(
            Decimal("0.0001"), rounding=ROUND_HALF_UP
        )
        run.result = ConsolidatedTrialBalance(
            group_id=group.id,
            period_end=run.period_end,
            reporting_currency=group.reporting_currency,
            rows=rows,
            contributions=contributions,
            eliminations=eliminations,
            minority_interests=minority,
            minority_interest_total=sum((m.equity_share for m in minority), ZERO),
            cta_total=cta_total,
            unmatched_intercompany=unmatched,
            total_debits=total_debits,
            total_credits=total_credits,
            is_balanced=is_balanced,
        )

    def _check_references(
        self,
        transactions: List[IntercompanyTransaction],
        eliminations: List[EliminationEntry],
        entities_by_id: Dict[UUID, ConsolidationEntity],
    ) -> None:
        for transaction in transactions:
            for entity_id in (transaction.source_entity_id, transaction.counterparty_entity_id):
                if entity_id not in entities_by_id:
                    raise ConsolidationError(
                        f"Intercompany transaction {transaction.id} references unknown entity {entity_id}",
                        code=ErrorCode.CONSOLIDATION_ENTITY_NOT_FOUND,
                        details={"transaction_id": str(transaction.id), "entity_id": str(entity_id)},
                    )
        for entry in eliminations:
            for entity_id in entry.source_entity_ids:
                if entity_id not in entities_by_id:
                    raise ConsolidationError(
                        f"Elimination {entry.id} references unknown entity {entity_id}",
                        code=ErrorCode.CONSOLIDATION_ENTITY_NOT_FOUND,
                        details={"elimination_id": str(entry.id), "entity_id": str(entity_id)},
                    )

    @staticmethod
    def _factor(entity: ConsolidationEntity) -> Decimal:
        if entity.consolidation_method == ConsolidationMethod.PROPORTIONAL:
            return entity.ownership_percentage / HUNDRED
        return Decimal("1")

    # =========================================================================
    # PER-ENTITY TRANSLATION
    # =========================================================================

    async def _consolidate_entity(
        self,
        entity: ConsolidationEntity,
        group: ConsolidationGroup,
        run: ConsolidationRun,
        consolidated: Dict[str, _AccountTotals],
        catalog: Dict[str, Tuple[str, AccountType]],
    ) -> Tuple[EntityContribution, Optional[MinorityInterest]]:
        accounts = await self.reports_service.repository.list_accounts(group.tenant_id, entity.company_id)
        if not accounts:
            raise ConsolidationError(
                f"Entity {entity.name} has no chart of accounts (company {entity.company_id})",
                code=ErrorCode.CONSOLIDATION_ENTITY_NOT_FOUND,
                details={"entity_id": str(entity.id), "company_id": str(entity.company_id)},
            )
        accounts_by_id: Dict[UUID, Account] = {a.id: a for a in accounts}
        for account in accounts:
            catalog.setdefault(account.code, (account.name, account.account_type))

        if entity.data_available_through is not None and entity.data_available_through < run.period_end:
            raise EntityDataError(
                entity.id,
                f"Entity {entity.name} has data only through {entity.data_available_through}",
                code=ErrorCode.ENTITY_DATA_OUT_OF_PERIOD,
            )

        trial_balance = await self.reports_service.generate_trial_balance(
            group.tenant_id,
            entity.company_id,
            run.period_end,
            TrialBalanceOptions(period_start=run.period_start),
        )
        if not trial_balance.rows:
            raise EntityDataError(entity.id, f"Entity {entity.name} has no posted data for the period")
        if not trial_balance.is_balanced:
            raise EntityDataError(
                entity.id,
                f"Entity {entity.name} trial balance is out of balance by {trial_balance.difference}",
            )

        is_foreign = entity.functional_currency.upper() != group.reporting_currency.upper()
        closing_rate = self._closing_rate(entity) if is_foreign else Decimal("1")

        contribution = EntityContribution(
            entity_id=entity.id,
            company_id=entity.company_id,
            consolidation_method=entity.consolidation_method,
            ownership_percentage=entity.ownership_percentage,
            functional_currency=entity.functional_currency,
            translation_rate=closing_rate if is_foreign else None,
        )

        if entity.consolidation_method == ConsolidationMethod.EQUITY:
            # Equity method - only the investment value is carried, not line items
            return contribution, None

        factor = self._factor(entity)
        translated_debits = ZERO
        translated_credits = ZERO
        equity_balance = ZERO
        net_income = ZERO

        for row in trial_balance.rows:
            account = accounts_by_id[row.account_id]
            rate = self._translation_rate(entity, account) if is_foreign else Decimal("1")
            debit = quantize(row.closing_debit * factor * rate)
            credit = quantize(row.closing_credit * factor * rate)
            if debit == 0 and credit == 0:
                continue

            totals = consolidated.get(account.code)
            if totals is None:
                totals = consolidated[account.code] = _AccountTotals(account.name, account.account_type)
            totals.debit += debit
            totals.credit += credit
            if entity.id not in totals.contributors:
                totals.contributors.append(entity.id)

            translated_debits += debit
            translated_credits += credit
            if account.account_type == AccountType.EQUITY:
                equity_balance += credit - debit
            elif account.account_type in (AccountType.REVENUE, AccountType.EXPENSE):
                net_income += credit - debit

        # Translation difference to CTA (equity)
        adjustment = translated_debits - translated_credits
        if adjustment != 0:
            code = self.settings.cta_account_code
            totals = consolidated.get(code)
            if totals is None:
                totals = consolidated[code] = _AccountTotals(
                    "Cumulative Translation Adjustment (OCI)", AccountType.EQUITY
                )
            if adjustment > 0:
                totals.credit += adjustment
                translated_credits += adjustment
            else:
                totals.debit += -adjustment
                translated_debits += -adjustment
            if entity.id not in totals.contributors:
                totals.contributors.append(entity.id)
            equity_balance += adjustment
            logger.debug(f"Entity {entity.name}: translation adjustment {adjustment} booked to {code}")

        contribution.translation_adjustment = adjustment
        contribution.amount = translated_debits

        nci = None
        if (
            entity.consolidation_method == ConsolidationMethod.FULL
            and not entity.is_parent
            and entity.ownership_percentage < HUNDRED
        ):
            minority_percentage = HUNDRED - entity.ownership_percentage
            minority_factor = minority_percentage / HUNDRED
            nci = MinorityInterest(
                entity_id=entity.id,
                minority_percentage=minority_percentage,
                equity_share=quantize((equity_balance + net_income) * minority_factor),
                income_share=quantize(net_income * minority_factor),
            )
        return contribution, nci

    def _closing_rate(self, entity: ConsolidationEntity) -> Decimal:
        rate = entity.closing_rate
        if entity.translation_method == TranslationMethod.HISTORICAL:
            rate = entity.historical_rate or entity.closing_rate
        if rate is None or rate <= 0:
            raise EntityDataError(
                entity.id,
                f"Entity {entity.name} ({entity.functional_currency}) has no translation rate",
                code=ErrorCode.TRANSLATION_RATE_MISSING,
            )
        return rate

    def _translation_rate(self, entity: ConsolidationEntity, account: Account) -> Decimal:
        """Rate for one account under the entity's translation method."""
        closing = entity.closing_rate
        average = entity.average_rate or closing
        historical = entity.historical_rate or closing

        if entity.translation_method == TranslationMethod.HISTORICAL:
            rate = historical
        elif account.account_type in (AccountType.REVENUE, AccountType.EXPENSE):
            rate = average
        elif account.account_type == AccountType.EQUITY:
            rate = historical
        elif entity.translation_method == TranslationMethod.TEMPORAL and account.sub_type not in MONETARY_SUB_TYPES:
            rate = historical
        else:
            rate = closing

        if rate is None or rate <= 0:
            raise EntityDataError(
                entity.id,
                f"Entity {entity.name} has no rate for account {account.code}",
                code=ErrorCode.TRANSLATION_RATE_MISSING,
            )
        return rate

    # =========================================================================
    # ELIMINATIONS
    # =========================================================================

    def _elimination_rule(self, transaction_type: IntercompanyTransactionType) -> Tuple[EliminationType, str, str]:
        s = self.settings
        rules = {
            IntercompanyTransactionType.SALE: (
                EliminationType.INTERCOMPANY_SALES,
                s.intercompany_revenue_account_code,
                s.intercompany_cost_of_sales_account_code,
            ),
            IntercompanyTransactionType.RECEIVABLE: (
                EliminationType.INTERCOMPANY_RECEIVABLES,
                s.intercompany_payable_account_code,
                s.intercompany_receivable_account_code,
            ),
            IntercompanyTransactionType.LOAN: (
                EliminationType.INTERCOMPANY_LOAN,
                s.intercompany_payable_account_code,
                s.intercompany_receivable_account_code,
            ),
            IntercompanyTransactionType.DIVIDEND: (
                EliminationType.INTERCOMPANY_DIVIDEND,
                s.intercompany_dividend_income_account_code,
                s.retained_earnings_account_code,
            ),
            IntercompanyTransactionType.INVESTMENT: (
                EliminationType.INVESTMENT_ELIMINATION,
                s.share_capital_account_code,
                s.investment_in_subsidiary_account_code,
            ),
        }
        return rules[transaction_type]

    def _automatic_eliminations(
        self,
        run: ConsolidationRun,
        group: ConsolidationGroup,
        transactions: List[IntercompanyTransaction],
        included: Set[UUID],
        factors: Dict[UUID, Decimal],
    ) -> Tuple[List[EliminationEntry], List[UUID]]:
        """
        One elimination entry per transaction type from matched pairs.

        A pair matches when the counterparty confirmed an amount within the
        match tolerance and both entities were consolidated line-by-line.
        """
        by_type: Dict[IntercompanyTransactionType, List[Tuple[IntercompanyTransaction, Decimal]]] = defaultdict(list)
        unmatched: List[UUID] = []

        for transaction in transactions:
            matched = (
                transaction.counterparty_amount is not None
                and abs(transaction.amount - transaction.counterparty_amount)
                <= self.settings.consolidation_match_tolerance
            )
            both_included = (
                transaction.source_entity_id in included
                and transaction.counterparty_entity_id in included
            )
            if not matched or not both_included:
                unmatched.append(transaction.id)
                logger.warning(
                    f"Run {run.id}: intercompany transaction {transaction.id} not eliminated "
                    f"(matched={matched}, both_included={both_included})"
                )
                continue
            factor = min(factors[transaction.source_entity_id], factors[transaction.counterparty_entity_id])
            by_type[transaction.transaction_type].append((transaction, quantize(transaction.amount * factor)))

        entries = []
        for transaction_type, items in by_type.items():
            elimination_type, debit_code, credit_code = self._elimination_rule(transaction_type)
            amount = sum((amount for _, amount in items), ZERO)
            if amount == 0:
                continue
            source_entities: List[UUID] = []
            for transaction, _ in items:
                for entity_id in (transaction.source_entity_id, transaction.counterparty_entity_id):
                    if entity_id not in source_entities:
                        source_entities.append(entity_id)
            entries.append(EliminationEntry(
                group_id=group.id,
                period_end=run.period_end,
                elimination_type=elimination_type,
                amount=amount,
                debit_account_code=debit_code,
                credit_account_code=credit_code,
                source_entity_ids=source_entities,
                intercompany_transaction_ids=[t.id for t, _ in items],
                is_automatic=True,
                approval_status=ApprovalStatus.APPROVED,
                description=f"Eliminate intercompany {transaction_type.value} balances",
                run_id=run.id,
            ))
        return entries, unmatched

    def _apply_elimination(
        self,
        entry: EliminationEntry,
        consolidated: Dict[str, _AccountTotals],
        catalog: Dict[str, Tuple[str, AccountType]],
    ) -> None:
        for code, is_debit in ((entry.debit_account_code, True), (entry.credit_account_code, False)):
            totals = consolidated.get(code)
            if totals is None:
                if code not in catalog:
                    raise ConsolidationError(
                        f"Elimination account {code} is not in any entity chart of accounts",
                        code=ErrorCode.ACCOUNT_NOT_CONFIGURED,
                        details={"account_code": code, "elimination_id": str(entry.id)},
                    )
                name, account_type = catalog[code]
                totals = consolidated[code] = _AccountTotals(name, account_type)
            if is_debit:
                totals.elimination_debit += entry.amount
            else:
                totals.elimination_credit += entry.amount

    # =========================================================================
    # CONTRIBUTIONS
    # =========================================================================

    @staticmethod
    def _assign_contribution_percentages(contributions: List[EntityContribution]) -> None:
        """Share of consolidated amounts per entity, summing to exactly 100.00."""
        total = sum((c.amount for c in contributions), ZERO)
        if total == 0:
            return
        for contribution in contributions:
            contribution.contribution_percentage = quantize(contribution.amount / total * HUNDRED)
        residual = HUNDRED - sum((c.contribution_percentage for c in contributions), ZERO)
        if residual != 0:
            largest = max(contributions, key=lambda c: c.amount)
            largest.contribution_percentage += residual

    # =========================================================================
    # AUDIT
    # =========================================================================

    async def _emit_transition(self, run: ConsolidationRun, from_status: RunStatus, to_status: RunStatus) -> None:
        if self.audit_sink is None:
            return
        await self.audit_sink.emit(AuditEvent(
            event_type=AuditEventType.CONSOLIDATION_RUN_TRANSITIONED,
            entity_type="consolidation_run",
            entity_id=str(run.id),
            user_id=str(run.requested_by_id) if run.requested_by_id else None,
            payload={
                "group_id": str(run.group_id),
                "period_end": run.period_end.isoformat(),
                "from": from_status.value,
                "to": to_status.value,
                "progress_percentage": run.progress_percentage,
                "error_count": run.error_count,
            },
        ))
