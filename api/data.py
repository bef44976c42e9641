"""GET /api/data: unified read endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import request_id_of, success_response
from core.models import InvoiceFilter, InvoiceStatus


VALID_TYPES = {"invoices", "invoice", "billing", "invoice_settings"}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    override_svc = services["overrides"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        business_id: str | None = Query(None),
        status: InvoiceStatus | None = Query(None),
        client_id: str | None = Query(None),
        project_id: str | None = Query(None),
        date_from: date | None = Query(None),
        date_to: date | None = Query(None),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        if type == "invoice":
            payload = _handle_invoice(invoice_svc, id)
        else:
            if business_id is None:
                raise ValueError(f"'business_id' is required for type '{type}'")
            business_uuid = UUID(business_id)

            if type == "invoices":
                filters = InvoiceFilter(
                    status=status,
                    client_id=UUID(client_id) if client_id else None,
                    project_id=UUID(project_id) if project_id else None,
                    date_from=date_from,
                    date_to=date_to,
                )
                payload = _handle_invoices(invoice_svc, business_uuid, filters)
            elif type == "billing":
                payload = override_svc.get_overview(business_uuid).model_dump(mode="json")
            else:
                payload = invoice_svc.get_settings(business_uuid).model_dump(mode="json")

        return success_response(payload, request_id_of(request)).model_dump(mode="json")

    return router


def _handle_invoice(invoice_svc, id):
    if not id:
        raise ValueError("'id' is required for type 'invoice'")
    return invoice_svc.get(UUID(id)).model_dump(mode="json")


def _handle_invoices(invoice_svc, business_id, filters):
    return [i.model_dump(mode="json") for i in invoice_svc.list_invoices(business_id, filters)]
