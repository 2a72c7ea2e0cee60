"""
Tests for EmailGatewayClient.

Focus on the contract with calling code: signed payloads out, EmailGatewayError
on any gateway failure.
"""

import hashlib
import hmac
import json

import pytest
import responses

from clients.email_client import EmailGatewayClient, EmailGatewayError

GATEWAY_URL = "https://gateway.example.com/send"


@pytest.fixture
def client():
    """Create client with test credentials."""
    return EmailGatewayClient(
        gateway_url=GATEWAY_URL,
        api_key="test-api-key",
        hmac_secret="test-hmac-secret",
    )


def send(client, **overrides):
    kwargs = dict(
        to="client@example.com",
        document_type="invoice",
        document_number="F-2025-0001",
        organization_name="Atelier Dupont",
        public_url="https://app.example.com/pay/abc",
        total_display="120,00 €",
    )
    kwargs.update(overrides)
    return client.send_document(**kwargs)


class TestEmailGatewayClientInit:
    """Test client initialization - fail-fast on invalid config."""

    @pytest.mark.parametrize("missing", ["gateway_url", "api_key", "hmac_secret"])
    def test_init_rejects_empty_credential(self, missing):
        """Each empty credential raises ValueError naming it."""
        kwargs = dict(gateway_url=GATEWAY_URL, api_key="k", hmac_secret="s")
        kwargs[missing] = ""

        with pytest.raises(ValueError, match=missing):
            EmailGatewayClient(**kwargs)


class TestSendDocument:
    """Test send_document - uses responses library for HTTP mocking."""

    @responses.activate
    def test_successful_send_returns_none(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        assert send(client) is None

    @responses.activate
    def test_payload_is_signed(self, client):
        """X-Signature is the HMAC-SHA256 of the exact body sent."""
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        send(client, message="Merci pour votre confiance")

        request = responses.calls[0].request
        expected = hmac.new(b"test-hmac-secret", request.body.encode("utf-8"), hashlib.sha256).hexdigest()
        assert request.headers["X-Signature"] == expected
        assert request.headers["X-API-Key"] == "test-api-key"

        payload = json.loads(request.body)
        assert payload["type"] == "document"
        assert payload["document_number"] == "F-2025-0001"
        assert payload["public_url"] == "https://app.example.com/pay/abc"
        assert payload["total"] == "120,00 €"
        assert payload["message"] == "Merci pour votre confiance"

    def test_unknown_document_type_raises_before_http(self, client):
        with pytest.raises(ValueError, match="document_type"):
            send(client, document_type="receipt")

    @responses.activate
    def test_gateway_500_raises_error(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": False, "message": "Internal error"}, status=500)

        with pytest.raises(EmailGatewayError, match="Internal error"):
            send(client)

    @responses.activate
    def test_gateway_success_false_raises_error(self, client):
        """Gateway returns 200 but success=false raises EmailGatewayError."""
        responses.add(responses.POST, GATEWAY_URL, json={"success": False, "message": "Invalid email"}, status=200)

        with pytest.raises(EmailGatewayError):
            send(client)

    @responses.activate
    def test_connection_failure_raises_error(self, client):
        responses.add(responses.POST, GATEWAY_URL, body=ConnectionError("Network unreachable"))

        with pytest.raises(EmailGatewayError, match="Connection failed"):
            send(client)

    @responses.activate
    def test_invalid_json_response_raises_error(self, client):
        responses.add(responses.POST, GATEWAY_URL, body="not json", status=200)

        with pytest.raises(EmailGatewayError, match="Invalid response"):
            send(client)
