"""Unauthenticated invoice routes reached through the emailed link.

The viewing token is the only credential. AuthMiddleware lets
/api/public/ through untouched.
"""

from fastapi import APIRouter, Query, Request

from api.base import request_id_of, success_response
from core.models import PublicPaymentRequest


def create_public_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]

    @router.get("/public/invoices")
    async def view_invoice(request: Request, token: str | None = Query(None)):
        view = invoice_svc.view_by_token(token)
        return success_response(view.model_dump(mode="json"), request_id_of(request)).model_dump(mode="json")

    @router.post("/public/invoices/pay")
    async def pay_invoice(request: Request, body: PublicPaymentRequest):
        # Card details go straight to the provider; only the client secret comes back.
        session = invoice_svc.prepare_public_payment(body.token, body.amount)
        return success_response(
            session.model_dump(mode="json", include={"client_secret", "amount"}),
            request_id_of(request),
        ).model_dump(mode="json")

    return router
