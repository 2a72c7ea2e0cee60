"""
Email gateway client for delivering billing documents.

Payloads are signed with HMAC-SHA256 and posted to an HTTP gateway that owns
templating and SMTP delivery.
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)

DOCUMENT_TYPES = ("quote", "invoice")


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: float = 10):
        """
        Initialize with gateway credentials.

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def _sign_and_send(self, payload: dict) -> None:
        payload_json = json.dumps(payload, separators=(",", ":"))

        signature = hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": signature,
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error("Email gateway connection failed: %s", e)
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error("Email gateway returned invalid JSON (status %s)", response.status_code)
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error("Email gateway error: %s", error_msg)
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send_document(
        self,
        to: str,
        document_type: str,
        document_number: str,
        organization_name: str,
        public_url: str,
        total_display: str,
        message: str | None = None,
    ) -> None:
        """
        Send a quote or invoice to its recipient.

        The gateway renders the "document" template; the email links to the
        public page where the client can view, sign or pay.

        Raises:
            ValueError: If document_type is not quote or invoice
            EmailGatewayError: On gateway failure
        """
        if document_type not in DOCUMENT_TYPES:
            raise ValueError(
                f"document_type must be 'quote' or 'invoice', got '{document_type}'"
            )

        payload = {
            "type": "document",
            "email": to,
            "document_type": document_type,
            "document_number": document_number,
            "organization_name": organization_name,
            "public_url": public_url,
            "total": total_display,
            "message": message or "",
            "sender": "billing",
        }
        self._sign_and_send(payload)
        logger.info("%s %s sent to %s", document_type.capitalize(), document_number, to)
