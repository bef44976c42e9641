"""
Email gateway client for invoice and receipt notifications.

Posts JSON to an HTTP gateway, authenticated with an API key and an
HMAC-SHA256 signature over the exact request body. Invoice mail goes out
under the "billing" sender; replies can be routed to the issuing business.
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)

VALID_SENDERS = ("billing", "system")


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: float = 10):
        """
        Raises:
            ValueError: If any credential is empty
        """
        for name, value in (("gateway_url", gateway_url), ("api_key", api_key), ("hmac_secret", hmac_secret)):
            if not value:
                raise ValueError(f"{name} is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def sign(self, payload_json: str) -> str:
        """Hex HMAC-SHA256 of the serialized payload."""
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _post(self, payload: dict) -> requests.Response:
        # Signed bytes must be exactly the bytes sent.
        body = json.dumps(payload, separators=(",", ":"))
        try:
            return requests.post(
                self.gateway_url,
                data=body,
                headers={
                    "Content-Type": "application/json",
                    "X-API-Key": self.api_key,
                    "X-Signature": self.sign(body),
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

    @staticmethod
    def _check(response: requests.Response) -> None:
        try:
            result = response.json()
        except ValueError:
            logger.error(f"Email gateway returned invalid JSON (HTTP {response.status_code})")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not result.get("success"):
            message = result.get("message", "Unknown error")
            logger.error(f"Email gateway error (HTTP {response.status_code}): {message}")
            raise EmailGatewayError(f"Gateway error: {message}")

    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        sender: str = "billing",
        reply_to: str | None = None,
    ) -> None:
        """
        Send a plain text email via gateway.

        Args:
            to: Recipient email address
            subject: Email subject line
            body: Plain text email body
            sender: Sender identity, "billing" or "system"
            reply_to: Address client replies should reach, e.g. the business's own email

        Raises:
            ValueError: If sender is invalid or recipient is empty
            EmailGatewayError: On gateway failure
        """
        if sender not in VALID_SENDERS:
            raise ValueError(f"sender must be one of {VALID_SENDERS}, got '{sender}'")
        if not to:
            raise ValueError("Recipient email is required")

        payload = {
            "type": "custom",
            "email": to,
            "subject": subject,
            "body": body,
            "sender": sender,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        self._check(self._post(payload))
        logger.info(f"Email sent to {to}: {subject}")
