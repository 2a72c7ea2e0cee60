"""GET /api/data: unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.exceptions import NotFoundError
from core.models import DocumentType


VALID_TYPES = {"quotes", "invoices", "sequences", "usage", "notifications", "payment_settings", "trash"}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    quote_svc = services["quote"]
    invoice_svc = services["invoice"]
    sequence_svc = services["sequence"]
    quota_svc = services["quota"]
    notification_svc = services["notification"]
    organization_svc = services["organization"]
    connect_svc = services["connect"]

    # -------------------------------------------------------------------------
    # Convenience routes (must be registered before the generic /data route)
    # -------------------------------------------------------------------------

    @router.get("/data/sequences/preview")
    def sequence_preview(request: Request, document_type: DocumentType = Query(...)):
        number = sequence_svc.preview(request.state.organization_id, document_type)
        return success_response({"document_type": document_type.value, "next_number": number}).model_dump(mode="json")

    @router.get("/data/connect/status")
    def connect_status(request: Request):
        return success_response(connect_svc.get_status(request.state.organization_id)).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Generic data endpoint
    # -------------------------------------------------------------------------

    @router.get("/data")
    def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        search: str | None = Query(None),
        status: str | None = Query(None),
        unread_only: bool = Query(False),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        org_id = request.state.organization_id

        if type == "quotes":
            return _handle_documents(quote_svc, org_id, id, search, status, limit, offset)

        if type == "invoices":
            return _handle_documents(invoice_svc, org_id, id, search, status, limit, offset)

        if type == "sequences":
            sequences = sequence_svc.list_sequences(org_id)
            return success_response(
                [s.model_dump(mode="json") for s in sequences]
            ).model_dump(mode="json")

        if type == "usage":
            return success_response(quota_svc.get_usage(org_id)).model_dump(mode="json")

        if type == "notifications":
            notifications = notification_svc.list_for_user(
                org_id, request.state.user_id, unread_only=unread_only, limit=limit
            )
            return success_response(
                [n.model_dump(mode="json") for n in notifications]
            ).model_dump(mode="json")

        if type == "payment_settings":
            return success_response(organization_svc.payment_settings(org_id)).model_dump(mode="json")

        if type == "trash":
            return _handle_trash((quote_svc, invoice_svc), org_id, limit)

    return router


def _handle_documents(service, org_id: UUID, id, search, status, limit, offset):
    if id:
        document = service.get_by_id(org_id, UUID(id))
        if document is None:
            raise NotFoundError(service.document_type.value, id)
        return success_response(document.model_dump(mode="json")).model_dump(mode="json")

    documents = service.list_documents(org_id, status=status, search=search, limit=limit, offset=offset)
    return success_response(
        [d.model_dump(mode="json") for d in documents]
    ).model_dump(mode="json")


def _handle_trash(services, org_id: UUID, limit: int):
    """Deleted quotes and invoices together, most recently deleted first."""
    items = []
    for service in services:
        for document in service.list_trash(org_id, limit=limit):
            items.append({"type": service.document_type.value, **document.model_dump(mode="json")})
    items.sort(key=lambda item: item["deleted_at"], reverse=True)
    return success_response(items[:limit]).model_dump(mode="json")
