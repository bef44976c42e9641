"""POST /api/actions: unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import request_id_of, success_response
from core.models import (
    ChangeOrderCreate,
    CompRequest,
    DiscountRequest,
    InvoiceCreate,
    InvoiceSettingsUpdate,
    InvoiceUpdate,
    OverrideOperation,
    PaymentCreate,
    TierChangeRequest,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "billing": BillingHandler(
            services["tier_change"],
            services["overrides"],
            services["seats"],
            services["permissions"],
        ),
        "invoice": InvoiceHandler(services["invoice"]),
        "change_order": ChangeOrderHandler(services["change_order"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}", None)
        result = method(body.data)
        return success_response(result, request_id_of(request)).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class BillingHandler:
    ALLOWED_ACTIONS = {"change_tier", "comp", "discount", "reconcile_seats"}

    def __init__(self, tier_change, overrides, seats, permissions):
        self.tier_change = tier_change
        self.overrides = overrides
        self.seats = seats
        self.permissions = permissions

    def _handle_change_tier(self, data: dict):
        request = TierChangeRequest(**data)
        result = self.tier_change.change_tier(request.business_id, request.new_tier, request.reason)
        return result.model_dump(mode="json")

    def _handle_comp(self, data: dict):
        request = CompRequest(**data)
        if request.action == OverrideOperation.APPLY:
            result = self.overrides.apply_comp(request.business_id, request.tier, request.reason)
        else:
            result = self.overrides.remove_comp(request.business_id, request.reason)
        return result.model_dump(mode="json")

    def _handle_discount(self, data: dict):
        request = DiscountRequest(**data)
        if request.action == OverrideOperation.APPLY:
            result = self.overrides.apply_discount(
                request.business_id,
                request.discount_type,
                request.discount_value,
                request.duration,
                request.duration_in_months,
                request.reason,
            )
        else:
            result = self.overrides.remove_discount(request.business_id, request.reason)
        return result.model_dump(mode="json", exclude_none=True)

    def _handle_reconcile_seats(self, data: dict):
        business_id = UUID(data["business_id"])
        self.permissions.require_billing_manager(business_id)
        return self.seats.reconcile(business_id).model_dump(mode="json")


class InvoiceHandler:
    ALLOWED_ACTIONS = {"create", "update", "send", "record_payment", "void", "update_settings"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        invoice = self.service.create(InvoiceCreate(**data))
        return {"id": str(invoice.id), "invoice_number": invoice.invoice_number}

    def _handle_update(self, data: dict):
        invoice_id = UUID(data.pop("id"))
        invoice = self.service.update_draft(invoice_id, InvoiceUpdate(**data))
        return invoice.model_dump(mode="json")

    def _handle_send(self, data: dict):
        invoice = self.service.send(
            UUID(data["id"]),
            recipient_email=data.get("recipient_email"),
            recipient_name=data.get("recipient_name"),
        )
        return invoice.model_dump(mode="json")

    def _handle_record_payment(self, data: dict):
        invoice_id = UUID(data.pop("id"))
        result = self.service.record_payment(invoice_id, PaymentCreate(**data))
        return result.model_dump(mode="json")

    def _handle_void(self, data: dict):
        invoice = self.service.void(UUID(data["id"]), data.get("reason"))
        return invoice.model_dump(mode="json")

    def _handle_update_settings(self, data: dict):
        business_id = UUID(data.pop("business_id"))
        settings = self.service.update_settings(business_id, InvoiceSettingsUpdate(**data))
        return settings.model_dump(mode="json")


class ChangeOrderHandler:
    ALLOWED_ACTIONS = {"create", "approve", "reject"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        invoice_id = UUID(data.pop("invoice_id"))
        change_order = self.service.create(invoice_id, ChangeOrderCreate(**data))
        return change_order.model_dump(mode="json")

    def _handle_approve(self, data: dict):
        approval = self.service.approve(UUID(data["invoice_id"]), UUID(data["id"]))
        return approval.model_dump(mode="json")

    def _handle_reject(self, data: dict):
        change_order = self.service.reject(UUID(data["invoice_id"]), UUID(data["id"]))
        return change_order.model_dump(mode="json")
