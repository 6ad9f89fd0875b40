"""
Sentry error reporting for the API and the Celery worker.

Client errors (4xx SparkbidException subclasses such as BidAlreadyDecided)
are expected outcomes of the bid race and are never reported. Lifecycle
invariant violations arrive as InternalInconsistency (500) and always are.
"""
import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from src.core.config import settings
from src.core.logging import get_logger

logger = get_logger(__name__)

SCRUBBED_HEADERS = ("authorization", "cookie", "x-payment-webhook-secret")


def init_sentry() -> None:
    if not settings.sentry_dsn:
        logger.info("Sentry disabled")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"sparkbid-backend@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            CeleryIntegration(monitor_beat_tasks=True),
        ],
        send_default_pii=False,
        before_send=_before_send,
    )
    logger.info("Sentry initialized", environment=settings.environment)


def _before_send(event, hint):
    exc_info = hint.get("exc_info")
    if exc_info:
        status_code = getattr(exc_info[1], "status_code", None)
        if status_code is not None and status_code < 500:
            return None

    headers = event.get("request", {}).get("headers")
    if headers:
        for header in SCRUBBED_HEADERS:
            if header in headers:
                headers[header] = "[FILTERED]"

    # Group invariant violations by reason rather than by stack
    reason = getattr(exc_info[1], "reason", None) if exc_info else None
    if reason:
        event["fingerprint"] = ["internal-inconsistency", reason]
    return event
