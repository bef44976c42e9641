"""Role checks for billing and invoicing operations.

Authentication happens in AuthMiddleware, which puts the caller's id in the
user context. These checks answer what that caller may do in a business.
"""

import logging
from uuid import UUID

from core.errors import AuthorizationError
from core.ports import MembershipDirectory
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"Owner", "Admin"})


class Permissions:
    """Membership and role gates backed by the membership directory."""

    def __init__(self, membership: MembershipDirectory):
        self._membership = membership

    def require_member(self, business_id: UUID, user_id: UUID | None = None) -> str:
        """
        Return the caller's role in the business.

        Raises:
            AuthorizationError: Caller is not a member
        """
        user_id = user_id or get_current_user_id()
        role = self._membership.get_role(business_id, user_id)
        if role is None:
            logger.warning(f"User {user_id} denied access to business {business_id}")
            raise AuthorizationError("You are not a member of this business")
        return role

    def is_business_admin(self, business_id: UUID, user_id: UUID | None = None) -> bool:
        user_id = user_id or get_current_user_id()
        return self._membership.get_role(business_id, user_id) in ADMIN_ROLES

    def require_business_admin(self, business_id: UUID, message: str, user_id: UUID | None = None) -> None:
        """
        Require Owner or Admin.

        message is the denial text shown to the caller, e.g.
        "Only admins can void invoices".
        """
        role = self.require_member(business_id, user_id)
        if role not in ADMIN_ROLES:
            raise AuthorizationError(message)

    def require_platform_admin(self, user_id: UUID | None = None) -> UUID:
        """Gate for the admin-portal billing overrides. Returns the admin's id."""
        user_id = user_id or get_current_user_id()
        if not self._membership.is_platform_admin(user_id):
            logger.warning(f"User {user_id} denied platform admin operation")
            raise AuthorizationError("Platform admin access required")
        return user_id

    def require_billing_manager(self, business_id: UUID, user_id: UUID | None = None) -> None:
        """Platform admins, or Owner/Admin of the business itself."""
        user_id = user_id or get_current_user_id()
        if self._membership.is_platform_admin(user_id):
            return
        self.require_business_admin(business_id, "Only admins can manage billing", user_id)
