"""POST /api/webhooks/stripe: provider lifecycle events.

Signature failures are the only non-2xx answer. Once an event is verified
it is acknowledged whether or not it was processed.
"""

import logging

from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

from api.base import error_response, request_id_of, ErrorCodes

logger = logging.getLogger(__name__)


def create_webhooks_router(services: dict) -> APIRouter:
    router = APIRouter()

    verifier = services["webhook_verifier"]
    sync_svc = services["subscription_sync"]

    @router.post("/webhooks/stripe")
    async def stripe_webhook(request: Request):
        payload = await request.body()
        try:
            event = verifier.construct_event(payload, request.headers.get("stripe-signature"))
        except ValueError as e:
            logger.warning(f"Rejected webhook: {e}")
            return JSONResponse(
                status_code=400,
                content=error_response(
                    ErrorCodes.INVALID_SIGNATURE, str(e), request_id_of(request)
                ).model_dump(mode="json"),
            )

        handled = sync_svc.handle_event(event)
        logger.info(f"Webhook {event.get('type')} ({event.get('id')}) handled={handled}")
        return {"received": True}

    return router
