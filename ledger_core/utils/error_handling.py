"""
Ledger Core - Error Handling

Centralized error taxonomy for the ledger posting and settlement engine:
- Standardized machine-readable error codes
- Exception hierarchy for invariant, business-rule and environmental failures
- Translation of SQLAlchemy errors into persistence error kinds

Expected validation outcomes are NOT raised: they are returned as tagged
result variants (see ledger_core.schemas). Exceptions are reserved for
structural errors, invariant failures and persistence failures.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DBAPIError,
)

logger = logging.getLogger("ledger_core.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the ledger core"""

    # Journal posting rules
    NO_LINES = "NO_LINES"
    TOO_MANY_LINES = "TOO_MANY_LINES"
    INVALID_LINE_AMOUNTS = "INVALID_LINE_AMOUNTS"
    ZERO_AMOUNTS = "ZERO_AMOUNTS"
    NEGATIVE_AMOUNT = "NEGATIVE_AMOUNT"
    UNBALANCED_JOURNAL = "UNBALANCED_JOURNAL"
    INVALID_CURRENCY = "INVALID_CURRENCY"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    ACCOUNT_SCOPE_MISMATCH = "ACCOUNT_SCOPE_MISMATCH"
    HEADER_ACCOUNT = "HEADER_ACCOUNT"
    SOD_VIOLATION = "SOD_VIOLATION"
    DUPLICATE_JOURNAL = "DUPLICATE_JOURNAL"

    # FX policy
    FX_RATE_REQUIRED = "FX_RATE_REQUIRED"
    EXCHANGE_RATE_REQUIRED = "EXCHANGE_RATE_REQUIRED"
    INVALID_EXCHANGE_RATE = "INVALID_EXCHANGE_RATE"

    # Payment / settlement
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
    BANK_ACCOUNT_NOT_FOUND = "BANK_ACCOUNT_NOT_FOUND"
    PARTY_NOT_FOUND = "PARTY_NOT_FOUND"
    PAYMENT_VALIDATION_FAILED = "PAYMENT_VALIDATION_FAILED"
    JOURNAL_VALIDATION_FAILED = "JOURNAL_VALIDATION_FAILED"
    ACCOUNT_NOT_CONFIGURED = "ACCOUNT_NOT_CONFIGURED"

    # Advance ledger
    ADVANCE_INSUFFICIENT = "ADVANCE_INSUFFICIENT"
    INVALID_AMOUNT = "INVALID_AMOUNT"

    # Consolidation
    CONSOLIDATION_GROUP_NOT_FOUND = "CONSOLIDATION_GROUP_NOT_FOUND"
    CONSOLIDATION_ENTITY_NOT_FOUND = "CONSOLIDATION_ENTITY_NOT_FOUND"
    CONSOLIDATION_RUN_NOT_FOUND = "CONSOLIDATION_RUN_NOT_FOUND"
    CONSOLIDATION_RUN_CONFLICT = "CONSOLIDATION_RUN_CONFLICT"
    INVALID_RUN_TRANSITION = "INVALID_RUN_TRANSITION"
    ENTITY_DATA_MISSING = "ENTITY_DATA_MISSING"
    ENTITY_DATA_OUT_OF_PERIOD = "ENTITY_DATA_OUT_OF_PERIOD"
    TRANSLATION_RATE_MISSING = "TRANSLATION_RATE_MISSING"

    # Invariants
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    BALANCE_SHEET_IMBALANCE = "BALANCE_SHEET_IMBALANCE"

    # Persistence (environmental)
    PERSISTENCE_UNAVAILABLE = "PERSISTENCE_UNAVAILABLE"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"


class LedgerError(Exception):
    """Base exception for all ledger core exceptions"""

    retryable: bool = False

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a serializable dictionary"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Input / Business Rule Exceptions
# ============================================================================

class ValidationFailedError(LedgerError):
    """Malformed input. Never retried automatically."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        code: ErrorCode = ErrorCode.PAYMENT_VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        _details["errors"] = list(errors or [])
        super().__init__(code=code, message=message, details=_details)


class BusinessRuleError(LedgerError):
    """Business rule violation (currency mismatch, over-allocation, SoD)"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.PAYMENT_VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(code=code, message=message, details=_details)


class InsufficientAdvanceError(BusinessRuleError):
    """Consuming more advance than is available"""

    def __init__(self, requested, available, currency: str):
        super().__init__(
            message=(
                f"Insufficient advance balance. Requested: {currency} {requested}, "
                f"Available: {currency} {available}"
            ),
            rule="ADVANCE_MUST_COVER_CONSUMPTION",
            code=ErrorCode.ADVANCE_INSUFFICIENT,
            details={
                "requested": str(requested),
                "available": str(available),
                "currency": currency,
                "shortfall": str(requested - available),
            },
        )


class DuplicateJournalError(BusinessRuleError):
    """A journal with the same number already exists for the company"""

    def __init__(self, journal_number: str):
        super().__init__(
            message=f"Journal {journal_number} has already been posted",
            rule="JOURNAL_NUMBER_UNIQUE",
            code=ErrorCode.DUPLICATE_JOURNAL,
            details={"journal_number": journal_number},
        )


class AccountNotConfiguredError(LedgerError):
    """A required system account cannot be resolved from the chart of accounts"""

    def __init__(self, purpose: str, account_code: Optional[str] = None):
        super().__init__(
            code=ErrorCode.ACCOUNT_NOT_CONFIGURED,
            message=f"No account configured for {purpose}",
            details={"purpose": purpose, "account_code": account_code},
        )


# ============================================================================
# Invariant Exceptions
# ============================================================================

class InvariantViolationError(LedgerError):
    """A correctness invariant failed. Reported with full numeric detail."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVARIANT_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code=code, message=message, details=details)


# ============================================================================
# Consolidation Exceptions
# ============================================================================

class ConsolidationError(LedgerError):
    """Structural consolidation error. Fatal to a run."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code=code, message=message, details=details)


class EntityDataError(ConsolidationError):
    """Missing or out-of-period entity data. Counted on the run, not fatal."""

    def __init__(self, entity_id, message: str, code: ErrorCode = ErrorCode.ENTITY_DATA_MISSING):
        super().__init__(
            message=message,
            code=code,
            details={"entity_id": str(entity_id)},
        )


class RunConflictError(ConsolidationError):
    """A run is already Running for the same group and period"""

    def __init__(self, group_id, period_end, running_run_id):
        super().__init__(
            message=f"Consolidation run {running_run_id} is already running for this group and period",
            code=ErrorCode.CONSOLIDATION_RUN_CONFLICT,
            details={
                "group_id": str(group_id),
                "period_end": period_end.isoformat(),
                "running_run_id": str(running_run_id),
            },
        )


class InvalidRunTransitionError(ConsolidationError):
    """Illegal state machine transition"""

    def __init__(self, run_id, from_status: str, to_status: str):
        super().__init__(
            message=f"Run {run_id} cannot move from {from_status} to {to_status}",
            code=ErrorCode.INVALID_RUN_TRANSITION,
            details={"run_id": str(run_id), "from": from_status, "to": to_status},
        )


# ============================================================================
# Persistence Exceptions
# ============================================================================

class PersistenceError(LedgerError):
    """Persistence collaborator failure"""

    def __init__(
        self,
        message: str = "A persistence error occurred",
        code: ErrorCode = ErrorCode.PERSISTENCE_UNAVAILABLE,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            details=details,
            original_error=original_error,
        )


class PersistenceUnavailableError(PersistenceError):
    """Store unreachable or transaction aborted. The caller decides whether to retry."""

    retryable = True

    def __init__(self, message: str = "Persistence layer unavailable", original_error: Optional[Exception] = None):
        super().__init__(
            message=message,
            code=ErrorCode.PERSISTENCE_UNAVAILABLE,
            original_error=original_error,
        )


class DataIntegrityError(PersistenceError):
    """Constraint violated on commit"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            message=message,
            code=ErrorCode.DATA_INTEGRITY_ERROR,
            original_error=original_error,
        )


def translate_persistence_error(exc: SQLAlchemyError) -> PersistenceError:
    """Map a SQLAlchemy error onto the ledger persistence error kinds"""
    if isinstance(exc, IntegrityError):
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            message = "A record with this value already exists"
        elif "foreign key" in error_str:
            message = "Referenced record does not exist"
        else:
            message = "Data integrity constraint violated"
        error: PersistenceError = DataIntegrityError(message, original_error=exc)
    elif isinstance(exc, (OperationalError, DBAPIError)):
        error = PersistenceUnavailableError("Database operation failed", original_error=exc)
    else:
        error = PersistenceError(original_error=exc)

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        exc_info=True,
    )
    return error
