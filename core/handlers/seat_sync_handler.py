"""
Handler for MembershipChanged events.

Re-runs seat reconciliation after someone joins or leaves. Billing
failures here are non-fatal: the membership change stands, the local seat
count is already saved, and an admin can re-run reconciliation later.
"""

import logging
from typing import Callable

from core.errors import BillingError
from core.events import MembershipChanged

logger = logging.getLogger(__name__)


def handle_membership_changed(seat_reconciler) -> Callable:
    """
    Factory that returns a MembershipChanged handler.

    Args:
        seat_reconciler: SeatReconciler instance
    """

    def handler(event: MembershipChanged):
        try:
            seat_reconciler.reconcile(event.business_id)
        except BillingError as e:
            logger.warning(f"Seat sync failed for business {event.business_id} (non-fatal): {e.message}")

    return handler
