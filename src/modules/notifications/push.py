"""
Push Gateway - Firebase Cloud Messaging

Offline fallback for targeted events. The Firebase Admin SDK is synchronous,
so sends run in a worker thread.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Protocol

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin.exceptions import FirebaseError, InvalidArgumentError

from src.core.exceptions import ServiceUnavailableError
from src.core.logging import get_logger
from src.modules.notifications.events import PushContent

logger = get_logger(__name__)


@dataclass
class PushResult:
    success_count: int = 0
    failure_count: int = 0
    # Tokens FCM reported as permanently unusable; callers deactivate them
    invalid_tokens: list[str] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.success_count > 0

    @property
    def retryable(self) -> bool:
        """Some sends failed for reasons other than a dead token."""
        return self.failure_count > len(self.invalid_tokens)


class PushGateway(Protocol):
    @property
    def enabled(self) -> bool: ...

    async def send(self, tokens: list[str], content: PushContent) -> PushResult: ...


class FirebasePushGateway:
    """FCM multicast sender."""

    def __init__(self, credentials_path: str = "", project_id: str = ""):
        self._credentials_path = credentials_path
        self._project_id = project_id
        self._app: firebase_admin.App | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._credentials_path) or self._has_default_app()

    @staticmethod
    def _has_default_app() -> bool:
        try:
            firebase_admin.get_app()
        except ValueError:
            return False
        return True

    def _get_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app
        try:
            self._app = firebase_admin.get_app()
        except ValueError:
            if not self._credentials_path:
                raise ServiceUnavailableError("firebase", "credentials not configured")
            options = {"projectId": self._project_id} if self._project_id else None
            cred = credentials.Certificate(self._credentials_path)
            self._app = firebase_admin.initialize_app(cred, options)
            logger.info("Firebase app initialized", project_id=self._project_id or None)
        return self._app

    async def send(self, tokens: list[str], content: PushContent) -> PushResult:
        if not tokens:
            return PushResult()

        app = self._get_app()
        message = messaging.MulticastMessage(
            notification=messaging.Notification(title=content.title, body=content.body),
            data=content.data,
            tokens=tokens,
        )
        response = await asyncio.to_thread(messaging.send_each_for_multicast, message, app=app)

        invalid: list[str] = []
        for token, send_response in zip(tokens, response.responses):
            if send_response.success:
                continue
            exc = send_response.exception
            if isinstance(exc, (messaging.UnregisteredError, messaging.SenderIdMismatchError, InvalidArgumentError)):
                invalid.append(token)
            else:
                logger.debug("FCM send failed", error=str(exc))

        logger.info(
            "FCM push sent",
            success_count=response.success_count,
            failure_count=response.failure_count,
            invalid_tokens=len(invalid),
        )
        return PushResult(
            success_count=response.success_count,
            failure_count=response.failure_count,
            invalid_tokens=invalid,
        )


# Errors the dispatcher treats as transient and retries
PUSH_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (FirebaseError, OSError)
