"""Unauthenticated routes behind the links sent to clients.

/api/public/invoices/{id}           payment page read model
/api/public/invoices/{id}/checkout  start a Stripe Checkout session
/api/public/quotes/{id}             quote page read model
/api/public/quotes/{id}/sign        client signature
"""

from uuid import UUID

from fastapi import APIRouter

from api.base import success_response
from auth.rate_limiter import RateLimiter
from core.models import QuoteSignature


def create_public_router(services: dict, checkout_limiter: RateLimiter | None = None) -> APIRouter:
    router = APIRouter(prefix="/public")

    quote_svc = services["quote"]
    invoice_svc = services["invoice"]
    checkout_svc = services["checkout"]

    @router.get("/invoices/{invoice_id}")
    def get_public_invoice(invoice_id: UUID):
        invoice = invoice_svc.get_public(invoice_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/checkout")
    def create_checkout_session(invoice_id: UUID):
        if checkout_limiter is not None:
            checkout_limiter.check(str(invoice_id))
        url = checkout_svc.create_checkout_session(invoice_id)
        return success_response({"url": url}).model_dump(mode="json")

    @router.get("/quotes/{quote_id}")
    def get_public_quote(quote_id: UUID):
        quote = quote_svc.get_public(quote_id)
        return success_response(quote.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/quotes/{quote_id}/sign")
    def sign_quote(quote_id: UUID, body: QuoteSignature):
        quote = quote_svc.sign(quote_id, body)
        return success_response({
            "id": str(quote.id),
            "number": quote.number,
            "status": quote.status.value,
            "signed_at": quote.signed_at.isoformat() if quote.signed_at else None,
        }).model_dump(mode="json")

    return router
