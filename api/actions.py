"""POST /api/actions: unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.exceptions import NotFoundError
from core.models import (
    DocumentUpdate,
    InvoiceCreate,
    ManualPaymentCreate,
    PlanChange,
    QuoteCreate,
    SequenceSettings,
    StripeKeysUpdate,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "quote": QuoteHandler(services["quote"]),
        "invoice": InvoiceHandler(services["invoice"]),
        "sequence": SequenceHandler(services["sequence"]),
        "organization": OrganizationHandler(services["organization"]),
        "connect": ConnectHandler(services["connect"]),
        "notification": NotificationHandler(services["notification"]),
    }

    @router.post("/actions")
    def perform_action(request: Request, body: ActionRequest):
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

        method = getattr(handler, f"_handle_{body.action}")
        result = method(request.state.organization_id, request.state.user_id, dict(body.data))
        return success_response(result).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class _DocumentHandler:
    def __init__(self, service):
        self.service = service

    def _handle_update(self, org_id: UUID, user_id: UUID, data: dict):
        document_id = UUID(data.pop("id"))
        document = self.service.update_draft(org_id, document_id, DocumentUpdate(**data), user_id=user_id)
        return document.model_dump(mode="json")

    def _handle_send(self, org_id: UUID, user_id: UUID, data: dict):
        document = self.service.send(
            org_id, UUID(data["id"]),
            user_id=user_id,
            recipient_email=data.get("recipient_email"),
            message=data.get("message"),
        )
        return document.model_dump(mode="json")

    def _handle_mark_sent(self, org_id: UUID, user_id: UUID, data: dict):
        document = self.service.mark_sent(org_id, UUID(data["id"]), user_id=user_id)
        return document.model_dump(mode="json")

    def _handle_delete(self, org_id: UUID, user_id: UUID, data: dict):
        document_id = UUID(data["id"])
        deleted = self.service.delete(org_id, document_id, user_id=user_id)
        if not deleted:
            raise NotFoundError(self.service.document_type.value, document_id)
        return {"deleted": True}

    def _handle_restore(self, org_id: UUID, user_id: UUID, data: dict):
        document = self.service.restore(org_id, UUID(data["id"]), user_id=user_id)
        return document.model_dump(mode="json")


class QuoteHandler(_DocumentHandler):
    ALLOWED_ACTIONS = {
        "create", "update", "send", "mark_sent", "accept", "reject", "expire",
        "convert_to_invoice", "delete", "restore",
    }

    def _handle_create(self, org_id: UUID, user_id: UUID, data: dict):
        quote = self.service.create(org_id, QuoteCreate(**data), user_id=user_id)
        return quote.model_dump(mode="json")

    def _handle_accept(self, org_id: UUID, user_id: UUID, data: dict):
        return self.service.accept(org_id, UUID(data["id"]), user_id=user_id).model_dump(mode="json")

    def _handle_reject(self, org_id: UUID, user_id: UUID, data: dict):
        return self.service.reject(org_id, UUID(data["id"]), user_id=user_id).model_dump(mode="json")

    def _handle_expire(self, org_id: UUID, user_id: UUID, data: dict):
        return self.service.expire(org_id, UUID(data["id"]), user_id=user_id).model_dump(mode="json")

    def _handle_convert_to_invoice(self, org_id: UUID, user_id: UUID, data: dict):
        invoice = self.service.convert_to_invoice(org_id, UUID(data["id"]), user_id=user_id)
        return invoice.model_dump(mode="json")


class InvoiceHandler(_DocumentHandler):
    ALLOWED_ACTIONS = {
        "create", "update", "send", "mark_sent", "record_payment", "cancel", "refund", "delete", "restore",
    }

    def _handle_create(self, org_id: UUID, user_id: UUID, data: dict):
        invoice = self.service.create(org_id, InvoiceCreate(**data), user_id=user_id)
        return invoice.model_dump(mode="json")

    def _handle_record_payment(self, org_id: UUID, user_id: UUID, data: dict):
        invoice_id = UUID(data.pop("id"))
        invoice, payment = self.service.record_manual_payment(
            org_id, invoice_id, ManualPaymentCreate(**data), user_id=user_id
        )
        return {
            "invoice": invoice.model_dump(mode="json"),
            "payment": payment.model_dump(mode="json"),
        }

    def _handle_cancel(self, org_id: UUID, user_id: UUID, data: dict):
        return self.service.cancel(org_id, UUID(data["id"]), user_id=user_id).model_dump(mode="json")

    def _handle_refund(self, org_id: UUID, user_id: UUID, data: dict):
        return self.service.refund(org_id, UUID(data["id"]), user_id=user_id).model_dump(mode="json")


class SequenceHandler:
    ALLOWED_ACTIONS = {"update"}

    def __init__(self, service):
        self.service = service

    def _handle_update(self, org_id: UUID, user_id: UUID, data: dict):
        sequence = self.service.update_sequence(org_id, SequenceSettings(**data), user_id=user_id)
        return sequence.model_dump(mode="json")


class OrganizationHandler:
    ALLOWED_ACTIONS = {"set_stripe_keys", "clear_stripe_keys", "change_plan"}

    def __init__(self, service):
        self.service = service

    def _handle_set_stripe_keys(self, org_id: UUID, user_id: UUID, data: dict):
        self.service.set_stripe_keys(org_id, StripeKeysUpdate(**data), user_id=user_id)
        return self.service.payment_settings(org_id)

    def _handle_clear_stripe_keys(self, org_id: UUID, user_id: UUID, data: dict):
        self.service.clear_stripe_keys(org_id, user_id=user_id)
        return self.service.payment_settings(org_id)

    def _handle_change_plan(self, org_id: UUID, user_id: UUID, data: dict):
        self.service.change_plan(org_id, PlanChange(**data).plan, user_id=user_id)
        return self.service.payment_settings(org_id)


class ConnectHandler:
    ALLOWED_ACTIONS = {"onboard", "dashboard_link"}

    def __init__(self, service):
        self.service = service

    def _handle_onboard(self, org_id: UUID, user_id: UUID, data: dict):
        url = self.service.create_onboarding_link(org_id, email=data["email"], user_id=user_id)
        return {"url": url}

    def _handle_dashboard_link(self, org_id: UUID, user_id: UUID, data: dict):
        return {"url": self.service.create_dashboard_link(org_id)}


class NotificationHandler:
    ALLOWED_ACTIONS = {"mark_read"}

    def __init__(self, service):
        self.service = service

    def _handle_mark_read(self, org_id: UUID, user_id: UUID, data: dict):
        notification_id = UUID(data["id"])
        if not self.service.mark_read(org_id, user_id, notification_id):
            raise ValueError(f"Notification {notification_id} not found or already read")
        return {"read": True}
