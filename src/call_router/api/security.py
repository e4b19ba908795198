"""
Webhook Signature Verification
Validates HMAC-SHA256 signatures on inbound telephony webhooks
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Request

from ..core.exceptions import ConfigurationError, WebhookSignatureError

logger = logging.getLogger(__name__)


class WebhookSignatureVerifier:
    """
    Validates the hex HMAC-SHA256 of the raw request body against the
    signature header sent by the platform.
    """

    def __init__(
        self,
        secret: Optional[str],
        header: str = "X-Cloudonix-Signature",
        enabled: bool = True,
    ):
        self.secret = secret
        self.header = header
        self.enabled = enabled

    def compute_signature(self, body: bytes) -> str:
        """Compute expected signature for a raw body"""
        return hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    async def validate(self, request: Request) -> bool:
        """
        Validate a webhook request

        Returns:
            True if valid or verification is disabled

        Raises:
            ConfigurationError: Verification enabled without a secret
            WebhookSignatureError: Signature missing or wrong
        """
        if not self.enabled:
            return True

        if not self.secret:
            logger.error("Webhook signature verification enabled but no secret configured")
            raise ConfigurationError("Webhook secret not configured")

        signature = request.headers.get(self.header)
        if not signature:
            logger.warning(f"Missing {self.header} header from {request.client.host if request.client else 'unknown'}")
            raise WebhookSignatureError(f"Missing {self.header} header")

        body = await request.body()
        expected = self.compute_signature(body)

        if not hmac.compare_digest(signature.strip().lower(), expected):
            logger.warning(f"Invalid webhook signature on {request.url.path}")
            raise WebhookSignatureError()

        return True


async def verify_webhook_signature(request: Request) -> None:
    """FastAPI dependency guarding the webhook routes"""
    verifier: WebhookSignatureVerifier = request.app.state.signature_verifier
    await verifier.validate(request)
