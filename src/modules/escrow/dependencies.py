"""
Escrow Module - FastAPI Dependencies
"""
import hmac
from typing import Annotated

from fastapi import Depends, Header

from src.core.config import settings
from src.core.exceptions import ServiceUnavailableError, UnauthorizedError
from src.core.logging import get_logger

logger = get_logger(__name__)


async def verify_payment_webhook(
    x_payment_webhook_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Capture callbacks must carry the shared secret configured for the provider."""
    if not settings.payment_webhook_secret:
        raise ServiceUnavailableError("payments", "Payment webhook is not configured")
    if not x_payment_webhook_secret or not hmac.compare_digest(
        x_payment_webhook_secret, settings.payment_webhook_secret
    ):
        logger.warning("Payment webhook rejected")
        raise UnauthorizedError("Invalid webhook secret")


PaymentWebhook = Depends(verify_payment_webhook)
