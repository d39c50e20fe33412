from fastapi import HTTPException, status
from typing import Iterable
import logging

from escrow_core import ActorRole

logger = logging.getLogger(__name__)


class PermissionChecker:
    """
    Role enforcement for the financial endpoints.

    RULES:
    1. Confirm deposit / release payment / reconcile: admin only
    2. Approve / reject advance payment: client or admin, never a professional
    3. Advance payment request: professional only
    4. Award quote: client or admin
    """

    def require_role(self, user: dict, roles: Iterable[ActorRole], action: str):
        allowed = {ActorRole(r).value for r in roles}
        if user.get("role") not in allowed:
            logger.info(
                f"[PERMISSION] Denied {action} for user:{user.get('user_id')} role:{user.get('role')}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {sorted(allowed)} required to {action}"
            )
        return True

    async def check_admin_role(self, user: dict, action: str = "perform this operation"):
        """Check if user has admin role"""
        return self.require_role(user, [ActorRole.ADMIN], action)

    async def check_can_decide_advance(self, user: dict, action: str) -> ActorRole:
        """
        Approve/reject is a client decision; admins may act on the client's behalf.
        Returns the role recorded on the transaction.
        """
        if user.get("role") == ActorRole.PROFESSIONAL.value:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Professionals cannot {action}"
            )
        self.require_role(user, [ActorRole.CLIENT, ActorRole.ADMIN], action)
        return ActorRole.ADMIN if user.get("role") == ActorRole.ADMIN.value else ActorRole.CLIENT

    async def check_professional_role(self, user: dict, action: str):
        return self.require_role(user, [ActorRole.PROFESSIONAL], action)

    async def check_client_or_admin(self, user: dict, action: str):
        return self.require_role(user, [ActorRole.CLIENT, ActorRole.ADMIN], action)
