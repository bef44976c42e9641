"""Per-tenant advisory lock around external subscription mutations.

Seat sync, tier change, comp and discount all read-modify-write named items
on the same provider subscription. Only one of them may run per tenant.
"""

import logging
from contextlib import contextmanager
from uuid import UUID

from redis.exceptions import LockError

from clients.valkey_client import ValkeyClient
from core.config import BillingConfig
from core.errors import StateConflict

logger = logging.getLogger(__name__)


class TenantLock:
    """Serializes billing operations per business using Valkey."""

    KEY_PREFIX = "billing:lock:"

    def __init__(self, valkey: ValkeyClient, config: BillingConfig):
        self._valkey = valkey
        self._timeout = config.lock_timeout_seconds
        self._blocking_timeout = config.lock_blocking_timeout_seconds

    def _key(self, business_id: UUID) -> str:
        return f"{self.KEY_PREFIX}{business_id}"

    @contextmanager
    def hold(self, business_id: UUID):
        """
        Hold the tenant's lock for the duration of the block.

        Raises:
            StateConflict: Another billing operation held the lock past the blocking timeout
        """
        lock = self._valkey.lock(
            self._key(business_id),
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
        )
        if not lock.acquire():
            raise StateConflict(
                "Another billing operation is in progress for this business. Try again shortly."
            )
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Expired mid-operation; the next holder already owns the key.
                logger.warning(f"Billing lock for {business_id} expired before release")
