"""
Acting user for the current request or job.

The auth middleware sets it from the session; services read it for role
checks, `created_by`/`recorded_by` columns and audit rows; the Postgres
client tags each pooled connection with it. Provider webhooks and the
overdue sweep run with no actor.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_acting_user: ContextVar[UUID | None] = ContextVar("acting_user", default=None)


def get_current_user_id() -> UUID:
    """Actor for a user-scoped operation. RuntimeError if none is set."""
    user_id = _acting_user.get()
    if user_id is None:
        raise RuntimeError("No user context set for a user-scoped billing operation")
    return user_id


def get_current_user_id_or_none() -> UUID | None:
    return _acting_user.get()


def set_current_user_id(user_id: UUID) -> None:
    _acting_user.set(user_id)


def clear_current_user_id() -> None:
    """Drop the actor; the middleware calls this when a request finishes."""
    _acting_user.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Act as user_id for the duration of the block, then restore the
    previous actor (or none).

        with user_context(admin_id):
            override_service.apply_comp(business_id, PlanTier.PRO, "partner")
    """
    token = _acting_user.set(user_id)
    try:
        yield user_id
    finally:
        _acting_user.reset(token)
