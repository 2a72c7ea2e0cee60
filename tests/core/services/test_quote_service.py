"""Tests for QuoteService."""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from core.events import QuoteAccepted, QuoteExpired, QuoteRejected, QuoteSent
from core.exceptions import (
    DocumentValidationError,
    InvalidTransitionError,
    NotFoundError,
    QuotaExceededError,
)
from core.models import DocumentType, InvoiceStatus, QuoteSignature, QuoteStatus
from core.plans import Plan
from utils.timezone import now_utc, today_utc


@pytest.fixture
def signature():
    return QuoteSignature(signer_name="Marie Curie", signer_email="marie@example.com", accept_terms=True)


class TestLifecycle:

    def test_create_defaults(self, make_quote):
        quote = make_quote()

        assert quote.status == QuoteStatus.DRAFT
        assert quote.number == f"D-{now_utc().year}-0001"
        assert quote.valid_until == today_utc() + timedelta(days=30)
        assert quote.total_cents == 12000

    def test_send_then_accept(self, quote_service, make_quote, test_org_id, email, published):
        quote = make_quote()

        quote_service.send(test_org_id, quote.id)
        accepted = quote_service.accept(test_org_id, quote.id)

        assert accepted.status == QuoteStatus.ACCEPTED
        assert email.send_document.call_args.kwargs["public_url"] == f"https://app.test/quote/{quote.id}"
        assert [type(e) for e in published] == [QuoteSent, QuoteAccepted]
        assert published[-1].signed is False

    def test_reject(self, quote_service, make_quote, test_org_id, published):
        quote = make_quote(status="sent")

        assert quote_service.reject(test_org_id, quote.id).status == QuoteStatus.REJECTED
        assert isinstance(published[-1], QuoteRejected)

    def test_draft_cannot_be_accepted(self, quote_service, make_quote, test_org_id):
        quote = make_quote()

        with pytest.raises(InvalidTransitionError):
            quote_service.accept(test_org_id, quote.id)

    def test_answered_quote_is_final(self, quote_service, make_quote, test_org_id):
        quote = make_quote(status="rejected")

        with pytest.raises(InvalidTransitionError):
            quote_service.accept(test_org_id, quote.id)

    def test_other_tenant_gets_not_found(self, quote_service, make_quote, other_org_id):
        quote = make_quote(status="sent")

        with pytest.raises(NotFoundError):
            quote_service.accept(other_org_id, quote.id)

    def test_monthly_quote_ceiling(self, quote_service, make_quote, db, test_org_id):
        db.organizations[test_org_id]["plan"] = Plan.FREE
        for _ in range(10):
            make_quote()

        with pytest.raises(QuotaExceededError) as exc_info:
            make_quote()
        assert exc_info.value.resource == "quotes"


class TestExpirySweep:

    def test_expires_sent_quotes_past_validity(self, quote_service, make_quote, published):
        stale = make_quote(status="sent", valid_until=date(2025, 1, 1))
        make_quote(status="sent", valid_until=today_utc() + timedelta(days=3))
        make_quote(status="draft", valid_until=date(2025, 1, 1))

        assert quote_service.expire_overdue_quotes() == 1
        assert [e.quote.id for e in published if isinstance(e, QuoteExpired)] == [stale.id]


class TestPublicPage:

    def test_draft_is_not_public(self, quote_service, make_quote):
        quote = make_quote()

        with pytest.raises(NotFoundError):
            quote_service.get_public(quote.id)

    def test_view_is_counted(self, quote_service, make_quote, db):
        quote = make_quote(status="sent")

        public = quote_service.get_public(quote.id)
        quote_service.get_public(quote.id)

        assert public.document_type == "quote"
        assert public.organization_name == "Atelier Dupont"
        assert db.row(DocumentType.QUOTE, quote.id)["view_count"] == 2

    def test_sign_accepts_with_signer(self, quote_service, make_quote, audit, published, signature):
        quote = make_quote(status="sent")

        signed = quote_service.sign(quote.id, signature)

        assert signed.status == QuoteStatus.ACCEPTED
        assert signed.signer_name == "Marie Curie"
        assert signed.signed_at is not None
        assert published[-1].signed is True
        assert audit.log_change.call_args.kwargs["actor"] == "client"

    def test_sign_twice_is_refused(self, quote_service, make_quote, signature):
        quote = make_quote(status="sent")
        quote_service.sign(quote.id, signature)

        with pytest.raises(InvalidTransitionError):
            quote_service.sign(quote.id, signature)

    def test_signing_an_expired_quote_expires_it(self, quote_service, make_quote, db, published, signature):
        quote = make_quote(status="sent", valid_until=date(2025, 1, 1))

        with pytest.raises(DocumentValidationError, match="expired on 2025-01-01"):
            quote_service.sign(quote.id, signature)

        assert db.row(DocumentType.QUOTE, quote.id)["status"] == "expired"
        assert isinstance(published[-1], QuoteExpired)

    def test_unknown_quote(self, quote_service, signature):
        with pytest.raises(NotFoundError):
            quote_service.sign(uuid4(), signature)


class TestConvertToInvoice:

    def test_accepted_quote_becomes_draft_invoice(self, quote_service, make_quote, test_org_id):
        quote = make_quote(status="accepted", title="Site vitrine")

        invoice = quote_service.convert_to_invoice(test_org_id, quote.id)

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.quote_id == quote.id
        assert invoice.number.startswith("F-")
        assert invoice.title == "Site vitrine"
        assert invoice.total_cents == quote.total_cents
        assert len(invoice.items) == len(quote.items)

    def test_unaccepted_quote_cannot_be_converted(self, quote_service, make_quote, test_org_id):
        quote = make_quote(status="sent")

        with pytest.raises(InvalidTransitionError):
            quote_service.convert_to_invoice(test_org_id, quote.id)
