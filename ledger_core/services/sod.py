"""
Ledger Core - Segregation of Duties

The core only asks the oracle and propagates its verdict.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from ledger_core.config import settings

logger = logging.getLogger(__name__)

WILDCARD = "*"


class SoDOracle(ABC):
    """Abstract base class for segregation-of-duties policies."""

    @abstractmethod
    async def is_authorized(
        self,
        tenant_id: UUID,
        company_id: UUID,
        user_id: UUID,
        role: str,
        voucher_type: str,
    ) -> bool:
        """Whether the role may post this voucher type."""
        pass

    async def approver_roles(
        self,
        tenant_id: UUID,
        company_id: UUID,
        role: str,
        voucher_type: str,
    ) -> List[str]:
        """Roles that must approve the posting. Empty when none is needed."""
        return []


class StaticRoleSoDOracle(SoDOracle):
    """
    Role -> voucher type permission map.

    Defaults to settings.sod_role_permissions. Roles listed in
    `approval_required_roles` may post but their postings need approval
    from one of `approvers`.
    """

    def __init__(
        self,
        role_permissions: Optional[Dict[str, Iterable[str]]] = None,
        approval_required_roles: Optional[Iterable[str]] = None,
        approvers: Optional[Iterable[str]] = None,
    ):
        if role_permissions is None:
            role_permissions = settings.sod_role_permissions
        self.role_permissions = {
            role.lower(): {v.lower() for v in voucher_types}
            for role, voucher_types in role_permissions.items()
        }
        self.approval_required_roles = {r.lower() for r in (approval_required_roles or [])}
        self.approvers = list(approvers or ["manager", "admin"])

    async def is_authorized(
        self,
        tenant_id: UUID,
        company_id: UUID,
        user_id: UUID,
        role: str,
        voucher_type: str,
    ) -> bool:
        allowed = self.role_permissions.get((role or "").lower())
        if allowed is None:
            logger.warning(f"SoD: unknown role '{role}' for user {user_id}")
            return False
        return WILDCARD in allowed or voucher_type.lower() in allowed

    async def approver_roles(
        self,
        tenant_id: UUID,
        company_id: UUID,
        role: str,
        voucher_type: str,
    ) -> List[str]:
        if (role or "").lower() in self.approval_required_roles:
            return list(self.approvers)
        return []
