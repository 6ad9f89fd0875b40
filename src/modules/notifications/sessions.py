"""
Live Session Registry

Routing table from user id to that user's connected realtime sessions
(SSE streams and WebSockets). One instance is created by the application
factory and shared by the dispatcher and the realtime transports.

Each session owns a bounded outbound queue; the transport drains it. A full
queue means the consumer is stuck, so the message counts as undelivered for
that session.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.core.logging import get_logger
from src.core.metrics import LIVE_SESSIONS
from src.modules.notifications.events import BroadcastFilter

logger = get_logger(__name__)


@dataclass(eq=False)
class LiveSession:
    user_id: uuid.UUID
    transport: str
    is_electrician: bool = False
    available: bool = False
    category: str | None = None
    city: str | None = None
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=100))
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False

    def offer(self, message: dict[str, Any]) -> bool:
        """Queue a message without waiting. False when closed or backed up."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Session queue full", session_id=self.id, user_id=str(self.user_id))
            return False
        return True

    @property
    def in_job_feed(self) -> bool:
        return self.is_electrician and self.available


class SessionRegistry:
    """
    Concurrent-safe map of user id -> live sessions.

    Mutations happen under one asyncio lock; fan-out iterates over a snapshot,
    so a session unregistering mid-delivery never breaks iteration.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._by_user: dict[uuid.UUID, dict[str, LiveSession]] = {}
        self._lock = asyncio.Lock()

    async def register(
        self,
        user_id: uuid.UUID,
        transport: str,
        *,
        is_electrician: bool = False,
        available: bool = False,
        category: str | None = None,
        city: str | None = None,
    ) -> LiveSession:
        session = LiveSession(
            user_id=user_id,
            transport=transport,
            is_electrician=is_electrician,
            available=available,
            category=category,
            city=city,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        async with self._lock:
            self._by_user.setdefault(user_id, {})[session.id] = session
        LIVE_SESSIONS.inc()
        logger.info(
            "Session registered",
            user_id=str(user_id),
            session_id=session.id,
            transport=transport,
            in_job_feed=session.in_job_feed,
        )
        return session

    async def unregister(self, session: LiveSession) -> None:
        session.closed = True
        async with self._lock:
            sessions = self._by_user.get(session.user_id)
            if not sessions or sessions.pop(session.id, None) is None:
                return
            if not sessions:
                del self._by_user[session.user_id]
        LIVE_SESSIONS.dec()
        logger.info("Session unregistered", user_id=str(session.user_id), session_id=session.id)

    async def sessions_for(self, user_id: uuid.UUID) -> list[LiveSession]:
        async with self._lock:
            return list(self._by_user.get(user_id, {}).values())

    async def is_online(self, user_id: uuid.UUID) -> bool:
        return bool(await self.sessions_for(user_id))

    async def set_availability(self, user_id: uuid.UUID, available: bool) -> None:
        for session in await self.sessions_for(user_id):
            session.available = available

    async def send_to_user(self, user_id: uuid.UUID, message: dict[str, Any]) -> int:
        """Deliver to every live session of the user. Returns how many accepted it."""
        return sum(session.offer(message) for session in await self.sessions_for(user_id))

    async def broadcast(self, message: dict[str, Any], audience: BroadcastFilter) -> int:
        """Deliver to every available electrician whose profile matches the filter."""
        async with self._lock:
            snapshot = [s for sessions in self._by_user.values() for s in sessions.values()]
        delivered = 0
        for session in snapshot:
            if session.in_job_feed and audience.matches(session.category, session.city):
                delivered += session.offer(message)
        return delivered

    async def count(self) -> int:
        async with self._lock:
            return sum(len(sessions) for sessions in self._by_user.values())
