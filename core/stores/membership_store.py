"""Read-only view of workspace membership for billing decisions."""

from uuid import UUID

from clients.postgres_client import PostgresClient


class PostgresMembershipDirectory:
    """MembershipDirectory over user_roles, roles and platform_admins."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def count_members(self, business_id: UUID) -> int:
        return self._db.execute_scalar(
            "SELECT COUNT(DISTINCT user_id) FROM user_roles WHERE business_id = %s",
            (business_id,),
        ) or 0

    def get_role(self, business_id: UUID, user_id: UUID) -> str | None:
        return self._db.execute_scalar(
            """
            SELECT r.name
            FROM user_roles ur
            JOIN roles r ON r.id = ur.role_id
            WHERE ur.business_id = %s AND ur.user_id = %s
            ORDER BY ur.assigned_at
            LIMIT 1
            """,
            (business_id, user_id),
        )

    def is_platform_admin(self, user_id: UUID) -> bool:
        return bool(self._db.execute_scalar(
            "SELECT EXISTS (SELECT 1 FROM platform_admins WHERE user_id = %s)",
            (user_id,),
        ))
