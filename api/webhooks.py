"""POST /webhooks/connect: Stripe Connect event receiver.

Responses follow what Stripe expects:
    200 {"received": true}  handled, duplicate or ignored
    400                     missing or invalid signature (generic message)
    500                     internal failure; Stripe redelivers with backoff
"""

import logging

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from clients.stripe_client import StripeGateway, WebhookSignatureError
from core.services.webhook_service import WebhookService
from core.webhook_events import parse_webhook_event

logger = logging.getLogger(__name__)


def create_webhooks_router(stripe_gateway: StripeGateway, webhook_service: WebhookService) -> APIRouter:
    router = APIRouter(prefix="/webhooks")

    @router.post("/connect")
    async def connect_webhook(request: Request):
        payload = await request.body()
        signature = request.headers.get("stripe-signature")

        try:
            envelope = stripe_gateway.verify_webhook(payload, signature)
        except WebhookSignatureError:
            return JSONResponse(status_code=400, content={"error": "Invalid signature"})

        event = parse_webhook_event(envelope)
        try:
            await run_in_threadpool(webhook_service.handle, event)
        except Exception:
            logger.exception("Error handling webhook event %s", type(event).__name__)
            return JSONResponse(status_code=500, content={"error": "Internal error"})

        return {"received": True}

    return router
