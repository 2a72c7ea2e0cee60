"""Shared test fixtures for the billing test suite."""

from pathlib import Path
from unittest.mock import Mock
from uuid import UUID

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from clients.email_client import EmailGatewayClient
from clients.stripe_client import StripeGateway
from clients.vault_client import VaultClient
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.models import DocumentType, InvoiceCreate, QuoteCreate
from core.services.invoice_service import InvoiceService
from core.services.notification_service import NotificationService
from core.services.quota_service import QuotaService
from core.services.quote_service import QuoteService
from core.services.sequence_service import SequenceService
from tests.fakes import FakeBillingDatabase, FakeValkey, line_item


# =============================================================================
# TEST CONSTANTS
# =============================================================================

# Primary organization and its user
TEST_ORG_ID = UUID("00000000-0000-0000-0000-00000000000a")
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")

# Second tenant - use for isolation tests
OTHER_ORG_ID = UUID("00000000-0000-0000-0000-00000000000b")
OTHER_USER_ID = UUID("00000000-0000-0000-0000-000000000002")

APP_BASE_URL = "https://app.test"

# Every event class services publish, for capture
EVENT_NAMES = (
    "QuoteSent", "QuoteAccepted", "QuoteRejected", "QuoteExpired",
    "InvoiceSent", "InvoicePaid", "InvoiceOverdue", "InvoiceCancelled", "InvoiceRefunded",
)


@pytest.fixture
def test_org_id() -> UUID:
    return TEST_ORG_ID


@pytest.fixture
def test_user_id() -> UUID:
    return TEST_USER_ID


@pytest.fixture
def other_org_id() -> UUID:
    return OTHER_ORG_ID


# =============================================================================
# STORE AND COLLABORATOR FIXTURES
# =============================================================================


@pytest.fixture
def db():
    """In-memory BillingDatabase with one starter-plan organization and its user."""
    fake = FakeBillingDatabase()
    fake.add_organization(TEST_ORG_ID, name="Atelier Dupont")
    fake.add_member(TEST_ORG_ID, TEST_USER_ID)
    fake.add_organization(OTHER_ORG_ID, name="Autre Studio")
    fake.add_member(OTHER_ORG_ID, OTHER_USER_ID)
    return fake


@pytest.fixture
def valkey():
    return FakeValkey()


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def email():
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def vault():
    mock = Mock(spec=VaultClient)
    mock.encrypt.side_effect = lambda plaintext: "vault:v1:ciphertext"
    mock.decrypt.return_value = "sk_test_org_own_key"
    return mock


@pytest.fixture
def stripe_gateway():
    mock = Mock(spec=StripeGateway)
    mock.platform_secret_key = "sk_test_platform"
    return mock


@pytest.fixture
def config():
    return BillingConfig(app_base_url=APP_BASE_URL)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on event_bus, in order."""
    events = []
    for name in EVENT_NAMES:
        event_bus.subscribe(name, events.append)
    return events


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def quota_service(db):
    return QuotaService(db)


@pytest.fixture
def sequence_service(db, audit):
    return SequenceService(db, audit)


@pytest.fixture
def notification_service(db):
    return NotificationService(db)


@pytest.fixture
def invoice_service(db, audit, event_bus, quota_service, sequence_service, email, config):
    return InvoiceService(db, audit, event_bus, quota_service, sequence_service, email=email, config=config)


@pytest.fixture
def quote_service(db, audit, event_bus, quota_service, sequence_service, email, config, invoice_service):
    return QuoteService(
        db, audit, event_bus, quota_service, sequence_service,
        email=email, config=config, invoices=invoice_service,
    )


# =============================================================================
# DOCUMENT FIXTURES
# =============================================================================


@pytest.fixture
def contact_id(db):
    return db.add_contact(TEST_ORG_ID, email="client@example.com")


@pytest.fixture
def make_invoice(invoice_service, contact_id, test_user_id):
    """Create an invoice (100,00 € + 20% VAT by default) and force its status."""

    def _make(status: str = "draft", items=None, organization_id: UUID = TEST_ORG_ID, **fields):
        invoice = invoice_service.create(
            organization_id,
            InvoiceCreate(contact_id=contact_id, items=items or [line_item()]),
            user_id=test_user_id,
        )
        if status != "draft" or fields:
            invoice_service.db.set_status(DocumentType.INVOICE, invoice.id, status, **fields)
        return invoice_service.db.get_document_unscoped(DocumentType.INVOICE, invoice.id)

    return _make


@pytest.fixture
def make_quote(quote_service, contact_id, test_user_id):
    """Create a quote and force its status."""

    def _make(status: str = "draft", items=None, **fields):
        quote = quote_service.create(
            TEST_ORG_ID,
            QuoteCreate(contact_id=contact_id, items=items or [line_item()]),
            user_id=test_user_id,
        )
        if status != "draft" or fields:
            quote_service.db.set_status(DocumentType.QUOTE, quote.id, status, **fields)
        return quote_service.db.get_document_unscoped(DocumentType.QUOTE, quote.id)

    return _make
