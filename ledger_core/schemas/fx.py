"""
Ledger Core - FX Policy Schemas
"""

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from ledger_core.utils.error_handling import ErrorCode


class FXDecision(BaseModel):
    """Resolved conversion policy for one document. One rate for every line."""
    status: Literal["ok"] = "ok"
    base_currency: str
    transaction_currency: str
    requires_conversion: bool
    rate: Decimal = Decimal("1")


class FXPolicyError(BaseModel):
    status: Literal["error"] = "error"
    code: ErrorCode
    message: str
    base_currency: str
    transaction_currency: str
    supplied_rate: Optional[Decimal] = None


FXResult = Annotated[Union[FXDecision, FXPolicyError], Field(discriminator="status")]
