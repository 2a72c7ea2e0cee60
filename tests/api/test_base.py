"""Tests for the response envelope, error mapping and request ids."""

from unittest.mock import Mock
from uuid import uuid4

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from api.app import run_daily_sweeps
from api.base import error_response, success_response
from api.errors import billing_error_details, billing_error_status, register_error_handlers
from api.middleware import RequestIDMiddleware
from core.exceptions import (
    AlreadyPaidError,
    DocumentImmutableError,
    DocumentValidationError,
    InvalidTransitionError,
    NotFoundError,
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentProviderUnavailableError,
    PlanRestrictionError,
    QuotaExceededError,
)
from core.services.invoice_service import InvoiceService
from core.services.quote_service import QuoteService


class TestEnvelope:

    def test_success_response(self):
        body = success_response({"id": 1}).model_dump(mode="json")

        assert body["success"] is True
        assert body["error"] is None
        assert body["meta"]["request_id"]

    def test_error_response(self):
        body = error_response("NOT_FOUND", "Invoice not found").model_dump(mode="json")

        assert body["success"] is False
        assert body["data"] is None
        assert body["error"] == {"code": "NOT_FOUND", "message": "Invoice not found", "details": None}


class TestBillingErrorMapping:

    @pytest.mark.parametrize("exc,status_code", [
        (NotFoundError("invoice", uuid4()), 404),
        (DocumentValidationError("bad"), 400),
        (QuotaExceededError("invoices", "free", 10), 402),
        (PlanRestrictionError("Bank transfers need the Starter plan", "free"), 403),
        (InvalidTransitionError("invoice", "paid", "cancelled"), 409),
        (DocumentImmutableError("sent"), 409),
        (AlreadyPaidError("paid"), 409),
        (PaymentConfigurationError("no key"), 400),
        (PaymentProviderUnavailableError("down"), 503),
        (PaymentProviderError("declined"), 502),
    ])
    def test_status_codes(self, exc, status_code):
        assert billing_error_status(exc) == status_code

    def test_provider_error_details(self):
        assert billing_error_details(PaymentProviderUnavailableError("down")) == {"retryable": True}
        assert billing_error_details(PaymentProviderError("declined")) == {"retryable": False}

    def test_validation_error_has_no_details(self):
        assert billing_error_details(DocumentValidationError("bad")) is None


class TestAppBehaviour:

    def test_health_is_public(self, unauthed_client):
        response = unauthed_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_request_id_header_generated(self, client):
        response = client.get("/api/data", params={"type": "sequences"})

        assert len(response.headers["X-Request-ID"]) == 36

    def test_well_formed_upstream_request_id_kept(self, client):
        response = client.get("/health", headers={"X-Request-ID": "lb-1234abcd"})

        assert response.headers["X-Request-ID"] == "lb-1234abcd"

    def test_malformed_upstream_request_id_replaced(self, client):
        response = client.get("/health", headers={"X-Request-ID": "bad id; drop table"})

        assert response.headers["X-Request-ID"] != "bad id; drop table"


class TestUnhandledErrors:

    def test_unexpected_exception_is_generic_500(self):
        app = FastAPI()
        app.add_middleware(RequestIDMiddleware)
        register_error_handlers(app)

        @app.get("/boom")
        def boom():
            raise KeyError("stripe_secret_key")

        response = TestClient(app, raise_server_exceptions=False).get("/boom")

        assert response.status_code == 500
        assert response.json()["error"] == {
            "code": "INTERNAL_ERROR", "message": "An internal error occurred", "details": None,
        }
        assert "stripe_secret_key" not in response.text


class TestDailySweeps:

    def test_runs_both_sweeps(self):
        """Scheduler entry point reports what each sweep changed."""
        invoices = Mock(spec=InvoiceService)
        invoices.mark_overdue_invoices.return_value = 2
        quotes = Mock(spec=QuoteService)
        quotes.expire_overdue_quotes.return_value = 1

        result = run_daily_sweeps({"invoice": invoices, "quote": quotes})

        assert result == {"invoices_overdue": 2, "quotes_expired": 1}
        invoices.mark_overdue_invoices.assert_called_once_with()
        quotes.expire_overdue_quotes.assert_called_once_with()
