"""Persistence for tenant billing state and the billing override log.

Billing state lives on the businesses table. Overrides are append-only:
rows are inserted, and only is_active is ever updated afterwards.
"""

import logging
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.errors import NotFoundError
from core.models import BillingOverride, OverrideAction, TenantBillingState
from utils.serialization import json_dumps
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_STATE_COLUMNS = (
    "id AS business_id, name, plan_tier, included_seats, seat_count, subscription_status, "
    "stripe_customer_id AS external_customer_id, "
    "stripe_subscription_id AS external_subscription_id, "
    "ai_credits_limit, ai_credits_used, cancel_at_period_end, current_period_end, updated_at"
)

# Model field -> businesses column
_UPDATABLE_COLUMNS = {
    "plan_tier": "plan_tier",
    "included_seats": "included_seats",
    "seat_count": "seat_count",
    "subscription_status": "subscription_status",
    "external_customer_id": "stripe_customer_id",
    "external_subscription_id": "stripe_subscription_id",
    "ai_credits_limit": "ai_credits_limit",
    "ai_credits_used": "ai_credits_used",
    "cancel_at_period_end": "cancel_at_period_end",
    "current_period_end": "current_period_end",
}


def _set_clause(changes: dict[str, Any]) -> tuple[str, list[Any]]:
    unknown = set(changes) - set(_UPDATABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Not updatable billing fields: {', '.join(sorted(unknown))}")

    assignments = [f"{_UPDATABLE_COLUMNS[field]} = %s" for field in changes]
    assignments.append("updated_at = %s")
    return ", ".join(assignments), [*changes.values(), now_utc()]


class PostgresBillingStore:
    """Billing state and override log on Postgres."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def get_state(self, business_id: UUID) -> TenantBillingState | None:
        row = self._db.execute_single(
            f"SELECT {_STATE_COLUMNS} FROM businesses WHERE id = %s",
            (business_id,),
        )
        return TenantBillingState.model_validate(row) if row else None

    def get_state_by_subscription(self, subscription_id: str) -> TenantBillingState | None:
        row = self._db.execute_single(
            f"SELECT {_STATE_COLUMNS} FROM businesses WHERE stripe_subscription_id = %s",
            (subscription_id,),
        )
        return TenantBillingState.model_validate(row) if row else None

    def get_state_by_customer(self, customer_id: str) -> TenantBillingState | None:
        row = self._db.execute_single(
            f"SELECT {_STATE_COLUMNS} FROM businesses WHERE stripe_customer_id = %s",
            (customer_id,),
        )
        return TenantBillingState.model_validate(row) if row else None

    def update_state(self, business_id: UUID, changes: dict[str, Any]) -> TenantBillingState:
        """
        Update billing columns and return the new state.

        Raises:
            NotFoundError: Business doesn't exist
            ValueError: A field is not a billing column
        """
        set_clause, values = _set_clause(changes)
        rows = self._db.execute_returning(
            f"UPDATE businesses SET {set_clause} WHERE id = %s RETURNING {_STATE_COLUMNS}",
            (*values, business_id),
        )
        if not rows:
            raise NotFoundError(f"Business {business_id} not found")
        return TenantBillingState.model_validate(rows[0])

    def record_override(
        self,
        business_id: UUID,
        action: OverrideAction,
        *,
        details: dict[str, Any],
        reason: str | None,
        performed_by: UUID | None,
        is_active: bool,
        state_changes: dict[str, Any] | None = None,
        deactivate: tuple[OverrideAction, ...] = (),
    ) -> BillingOverride:
        """
        Append an override row, atomically with its state change.

        In one transaction: apply state_changes to the business, deactivate
        every active row whose type is in `deactivate`, insert the new row.
        """
        with self._db.transaction() as tx:
            if state_changes:
                set_clause, values = _set_clause(state_changes)
                updated = tx.execute_rowcount(
                    f"UPDATE businesses SET {set_clause} WHERE id = %s",
                    (*values, business_id),
                )
                if updated == 0:
                    raise NotFoundError(f"Business {business_id} not found")

            if deactivate:
                tx.execute(
                    """
                    UPDATE billing_overrides SET is_active = false
                    WHERE business_id = %s AND action_type = ANY(%s) AND is_active
                    """,
                    (business_id, list(deactivate)),
                )

            row = tx.execute_single(
                """
                INSERT INTO billing_overrides (
                    id, business_id, action_type, details, reason,
                    performed_by, is_active, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(), business_id, action, Json(details, dumps=json_dumps), reason,
                    performed_by, is_active, now_utc(),
                ),
            )

        logger.info("Billing override %s recorded for %s", action.value, business_id)
        return BillingOverride.model_validate(row)

    def list_overrides(self, business_id: UUID, limit: int = 50) -> list[BillingOverride]:
        """Override history, newest first."""
        rows = self._db.execute(
            """
            SELECT * FROM billing_overrides
            WHERE business_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (business_id, limit),
        )
        return [BillingOverride.model_validate(row) for row in rows]

    def record_subscription_event(
        self,
        business_id: UUID,
        event_type: str,
        provider_event_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append a processed provider webhook event to the business's log."""
        self._db.execute(
            """
            INSERT INTO subscription_events (id, business_id, event_type, stripe_event_id, metadata, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(), business_id, event_type, provider_event_id,
                Json(metadata or {}, dumps=json_dumps), now_utc(),
            ),
        )
