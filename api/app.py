"""
Application assembly.

Services are built once per process and handed to the router factories.
Event handlers are subscribed here so that services only ever publish.
"""

import logging

from fastapi import FastAPI

from api.actions import create_actions_router
from api.data import create_data_router
from api.errors import register_error_handlers
from api.exports import create_exports_router
from api.middleware import RequestIDMiddleware
from api.public import create_public_router
from api.webhooks import create_webhooks_router
from auth.config import AuthConfig
from auth.rate_limiter import RateLimiter
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.stripe_client import StripeGateway
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    VaultClient,
    get_database_url,
    get_email_config,
    get_stripe_config,
    get_valkey_url,
    get_vault_client,
)
from core.audit import AuditLogger
from core.config import BillingConfig
from core.database import BillingDatabase
from core.event_bus import EventBus
from core.handlers.invoice_overdue_handler import handle_invoice_overdue
from core.handlers.invoice_payment_handler import handle_invoice_paid, handle_invoice_refunded
from core.handlers.quote_response_handler import handle_quote_accepted, handle_quote_rejected
from core.services.checkout_service import CheckoutService
from core.services.connect_service import ConnectService
from core.services.export_service import ExportService
from core.services.invoice_service import InvoiceService
from core.services.notification_service import NotificationService
from core.services.organization_service import OrganizationService
from core.services.quota_service import QuotaService
from core.services.quote_service import QuoteService
from core.services.sequence_service import SequenceService
from core.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)


def register_handlers(event_bus: EventBus, notification_service: NotificationService) -> None:
    """Subscribe the notification handlers to domain events."""
    event_bus.subscribe("QuoteAccepted", handle_quote_accepted(notification_service))
    event_bus.subscribe("QuoteRejected", handle_quote_rejected(notification_service))
    event_bus.subscribe("InvoicePaid", handle_invoice_paid(notification_service))
    event_bus.subscribe("InvoiceRefunded", handle_invoice_refunded(notification_service))
    event_bus.subscribe("InvoiceOverdue", handle_invoice_overdue(notification_service))


def build_services(
    db: BillingDatabase,
    audit: AuditLogger,
    vault: VaultClient,
    stripe_gateway: StripeGateway,
    email: EmailGatewayClient | None = None,
    config: BillingConfig | None = None,
    event_bus: EventBus | None = None,
) -> dict:
    """
    Build the services dict consumed by the router factories.

    Returns:
        Dict keyed by domain: quote, invoice, sequence, quota, notification,
        organization, connect, checkout, webhook, export
    """
    config = config or BillingConfig()
    event_bus = event_bus or EventBus()

    quotas = QuotaService(db)
    sequences = SequenceService(db, audit)
    notifications = NotificationService(db)

    document_deps = dict(email=email, config=config)
    invoices = InvoiceService(db, audit, event_bus, quotas, sequences, **document_deps)
    quotes = QuoteService(db, audit, event_bus, quotas, sequences, invoices=invoices, **document_deps)

    register_handlers(event_bus, notifications)

    return {
        "quote": quotes,
        "invoice": invoices,
        "sequence": sequences,
        "quota": quotas,
        "notification": notifications,
        "organization": OrganizationService(db, audit, vault, config),
        "connect": ConnectService(db, audit, stripe_gateway, config),
        "checkout": CheckoutService(db, stripe_gateway, vault, config),
        "webhook": WebhookService(db, audit, event_bus, notifications),
        "export": ExportService(db),
    }


def create_app(
    services: dict,
    session_manager: SessionManager,
    stripe_gateway: StripeGateway,
    auth_config: AuthConfig | None = None,
    checkout_limiter: RateLimiter | None = None,
    export_limiter: RateLimiter | None = None,
) -> FastAPI:
    """FastAPI app with middleware, error handlers and every router mounted."""
    app = FastAPI(title="Billing")
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(AuthMiddleware, session_manager=session_manager, config=auth_config)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")
    app.include_router(create_public_router(services, checkout_limiter), prefix="/api")
    app.include_router(create_exports_router(services, export_limiter), prefix="/api")
    app.include_router(create_webhooks_router(stripe_gateway, services["webhook"]))

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


def create_app_from_vault(
    config: BillingConfig | None = None,
    auth_config: AuthConfig | None = None,
) -> FastAPI:
    """Build every client from Vault secrets and assemble the app."""
    config = config or BillingConfig()
    auth_config = auth_config or AuthConfig()

    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    vault = get_vault_client()

    stripe_config = get_stripe_config()
    stripe_gateway = StripeGateway(
        stripe_config["secret_key"],
        stripe_config["connect_webhook_secret"],
        timeout=config.stripe_timeout_seconds,
        max_network_retries=config.stripe_max_network_retries,
    )

    email_config = get_email_config()
    email = EmailGatewayClient(
        email_config["gateway_url"],
        email_config["api_key"],
        email_config["hmac_secret"],
    )

    services = build_services(
        BillingDatabase(postgres),
        AuditLogger(postgres),
        vault,
        stripe_gateway,
        email=email,
        config=config,
    )

    checkout_limiter = RateLimiter(
        valkey,
        "checkout",
        config.checkout_rate_limit_attempts,
        config.checkout_rate_limit_window_minutes * 60,
    )
    export_limiter = RateLimiter(
        valkey,
        "export",
        config.export_rate_limit_attempts,
        config.export_rate_limit_window_minutes * 60,
    )

    logger.info("Billing app assembled for %s", config.app_base_url)
    return create_app(
        services,
        SessionManager(valkey, auth_config),
        stripe_gateway,
        auth_config=auth_config,
        checkout_limiter=checkout_limiter,
        export_limiter=export_limiter,
    )


def run_daily_sweeps(services: dict) -> dict:
    """
    Cross-tenant maintenance, called once a day by the scheduler.

    Returns:
        Counts of invoices marked overdue and quotes expired.
    """
    overdue = services["invoice"].mark_overdue_invoices()
    expired = services["quote"].expire_overdue_quotes()
    logger.info("Daily sweeps: %d invoices overdue, %d quotes expired", overdue, expired)
    return {"invoices_overdue": overdue, "quotes_expired": expired}
