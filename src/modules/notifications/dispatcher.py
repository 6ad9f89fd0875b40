"""
Notification Dispatcher

Fans lifecycle events out to participants after the originating transaction
has committed. Services call ``publish``; a single background task drains the
queue so delivery never runs inside a transaction or a job lock.

Per targeted recipient: every live session first; with no live session, push
to the user's active device tokens with a bounded linear-backoff retry, then
drop with a warning. Broadcasts are realtime only. Nothing here raises back
into the caller; every outcome ends up in ``notification_log``.
"""
import asyncio
import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.logging import get_logger
from src.core.metrics import record_notification
from src.core.models import utc_now
from src.modules.notifications.events import LifecycleEvent, PushContent
from src.modules.notifications.models import (
    DeliveryOutcome,
    DeliveryTransport,
    DeviceToken,
    NotificationLog,
)
from src.modules.notifications.push import PUSH_TRANSIENT_ERRORS, PushGateway
from src.modules.notifications.sessions import SessionRegistry

logger = get_logger(__name__)


@dataclass
class DeliveryRecord:
    recipient_id: uuid.UUID | None
    transport: DeliveryTransport
    outcome: DeliveryOutcome
    attempts: int = 0
    detail: str | None = None


class NotificationDispatcher:
    def __init__(
        self,
        sessions: SessionRegistry,
        push: PushGateway,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        max_push_attempts: int = 3,
        retry_backoff: float = 0.5,
        queue_size: int = 1000,
    ):
        self.sessions = sessions
        self.push = push
        self._session_maker = session_maker
        self._max_push_attempts = max(1, max_push_attempts)
        self._retry_backoff = retry_backoff
        self._queue: asyncio.Queue[LifecycleEvent | None] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
        logger.info("Notification dispatcher started")

    async def stop(self, timeout: float = 10.0) -> None:
        """Deliver what is already queued, then stop the worker."""
        if not self.running:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Dispatcher stopped with undelivered events", pending=self._queue.qsize())
        await self._queue.put(None)
        await self._worker
        self._worker = None
        logger.info("Notification dispatcher stopped")

    def publish(self, *events: LifecycleEvent) -> None:
        """Enqueue events for delivery. Never blocks, never raises."""
        for event in events:
            try:
                self._queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dispatcher queue full, event dropped", event_type=event.type, job_id=str(event.job_id))
                record_notification(event.type, DeliveryTransport.NONE.value, DeliveryOutcome.DROPPED.value)

    async def drain(self) -> None:
        """Wait until everything published so far has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    return
                await self.deliver(event)
            except Exception:
                logger.exception("Notification delivery crashed", event_type=getattr(event, "type", None))
            finally:
                self._queue.task_done()

    async def deliver(self, event: LifecycleEvent) -> list[DeliveryRecord]:
        audience = event.audience()
        wire = event.to_wire()
        records: list[DeliveryRecord] = []

        if audience.broadcast is not None:
            count = await self.sessions.broadcast(wire, audience.broadcast)
            records.append(
                DeliveryRecord(
                    recipient_id=None,
                    transport=DeliveryTransport.REALTIME,
                    outcome=DeliveryOutcome.DELIVERED if count else DeliveryOutcome.DROPPED,
                    attempts=1,
                    detail=f"{count} sessions",
                )
            )

        for user_id in dict.fromkeys(audience.user_ids):
            records.append(await self._deliver_to_user(event, user_id, wire))

        for record in records:
            record_notification(event.type, record.transport.value, record.outcome.value)
        await self._write_log(event, records)
        return records

    async def _deliver_to_user(self, event: LifecycleEvent, user_id: uuid.UUID, wire: dict) -> DeliveryRecord:
        delivered = await self.sessions.send_to_user(user_id, wire)
        if delivered:
            return DeliveryRecord(user_id, DeliveryTransport.REALTIME, DeliveryOutcome.DELIVERED, 1, f"{delivered} sessions")

        content = event.push_content()
        if content is None:
            return DeliveryRecord(user_id, DeliveryTransport.NONE, DeliveryOutcome.DROPPED, 0, "offline")
        return await self._push(event, user_id, content)

    async def _push(self, event: LifecycleEvent, user_id: uuid.UUID, content: PushContent) -> DeliveryRecord:
        if not self.push.enabled:
            return DeliveryRecord(user_id, DeliveryTransport.PUSH, DeliveryOutcome.DROPPED, 0, "push disabled")

        tokens = await self._active_tokens(user_id)
        if not tokens:
            return DeliveryRecord(user_id, DeliveryTransport.PUSH, DeliveryOutcome.DROPPED, 0, "no device tokens")

        last_error = None
        for attempt in range(1, self._max_push_attempts + 1):
            try:
                result = await self.push.send(tokens, content)
            except PUSH_TRANSIENT_ERRORS as exc:
                last_error = str(exc)
            except Exception as exc:
                logger.warning("Push failed", user_id=str(user_id), event_type=event.type, error=str(exc))
                return DeliveryRecord(user_id, DeliveryTransport.PUSH, DeliveryOutcome.FAILED, attempt, str(exc))
            else:
                if result.invalid_tokens:
                    await self._deactivate_tokens(result.invalid_tokens)
                    tokens = [t for t in tokens if t not in result.invalid_tokens]
                if result.delivered:
                    await self._touch_tokens(tokens)
                    return DeliveryRecord(user_id, DeliveryTransport.PUSH, DeliveryOutcome.DELIVERED, attempt)
                if not tokens or not result.retryable:
                    return DeliveryRecord(user_id, DeliveryTransport.PUSH, DeliveryOutcome.DROPPED, attempt, "tokens rejected")
                last_error = f"{result.failure_count} sends failed"

            if attempt < self._max_push_attempts:
                await asyncio.sleep(self._retry_backoff * attempt)

        logger.warning(
            "Push dropped after retries",
            user_id=str(user_id),
            event_type=event.type,
            job_id=str(event.job_id),
            attempts=self._max_push_attempts,
            error=last_error,
        )
        return DeliveryRecord(
            user_id,
            DeliveryTransport.PUSH,
            DeliveryOutcome.DROPPED,
            self._max_push_attempts,
            last_error,
        )

    async def _active_tokens(self, user_id: uuid.UUID) -> list[str]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(DeviceToken.token).where(
                    DeviceToken.user_id == user_id,
                    DeviceToken.is_active.is_(True),
                )
            )
            return list(result.scalars().all())

    async def _deactivate_tokens(self, tokens: list[str]) -> None:
        async with self._session_maker() as db:
            await db.execute(
                update(DeviceToken)
                .where(DeviceToken.token.in_(tokens))
                .values(is_active=False, failed_count=DeviceToken.failed_count + 1)
            )
            await db.commit()
        logger.info("Device tokens deactivated", count=len(tokens))

    async def _touch_tokens(self, tokens: list[str]) -> None:
        async with self._session_maker() as db:
            await db.execute(
                update(DeviceToken).where(DeviceToken.token.in_(tokens)).values(last_used_at=utc_now())
            )
            await db.commit()

    async def _write_log(self, event: LifecycleEvent, records: list[DeliveryRecord]) -> None:
        try:
            async with self._session_maker() as db:
                db.add_all(
                    NotificationLog(
                        event_type=event.type,
                        job_id=event.job_id,
                        recipient_id=record.recipient_id,
                        transport=record.transport.value,
                        outcome=record.outcome.value,
                        attempts=record.attempts,
                        detail=record.detail,
                    )
                    for record in records
                )
                await db.commit()
        except Exception:
            logger.exception("Failed to write notification log", event_type=event.type)
