"""
Notification dispatcher and live session registry tests.
"""
import uuid
from decimal import Decimal

import pytest
from firebase_admin.exceptions import UnavailableError
from sqlalchemy import select

from src.modules.auth.models import UserRole
from src.modules.notifications.dispatcher import NotificationDispatcher
from src.modules.notifications.events import (
    BidAccepted,
    BidNew,
    BroadcastFilter,
    JobCancelled,
    JobNew,
    parse_event,
)
from src.modules.notifications.models import (
    DeliveryOutcome,
    DeliveryTransport,
    DeviceToken,
    NotificationLog,
)
from src.modules.notifications.push import PushResult
from src.modules.notifications.sessions import SessionRegistry


def _bid_new(owner_id, **overrides) -> BidNew:
    fields = {
        "job_id": uuid.uuid4(),
        "actor_id": uuid.uuid4(),
        "owner_id": owner_id,
        "bid_id": uuid.uuid4(),
        "bidder_id": uuid.uuid4(),
        "amount": Decimal("450.00"),
    }
    fields.update(overrides)
    return BidNew(**fields)


def _job_new(category="elektrik", city="Istanbul") -> JobNew:
    return JobNew(
        job_id=uuid.uuid4(),
        actor_id=uuid.uuid4(),
        title="Sigorta atıyor",
        category=category,
        urgency="high",
        city=city,
    )


async def _add_tokens(session_maker, user_id, *tokens):
    async with session_maker() as session:
        session.add_all(DeviceToken(user_id=user_id, token=token, platform="android") for token in tokens)
        await session.commit()


async def _tokens(session_maker, user_id) -> dict[str, DeviceToken]:
    async with session_maker() as session:
        result = await session.execute(select(DeviceToken).where(DeviceToken.user_id == user_id))
        return {row.token: row for row in result.scalars().all()}


@pytest.fixture
def quick_dispatcher(sessions, push, session_maker) -> NotificationDispatcher:
    """Not started: tests call ``deliver`` directly."""
    return NotificationDispatcher(sessions, push, session_maker, max_push_attempts=3, retry_backoff=0)


class TestWireFormat:

    def test_events_serialize_in_camel_case(self):
        event = _bid_new(uuid.uuid4())

        wire = event.to_wire()

        assert wire["type"] == "bid:new"
        assert wire["jobId"] == str(event.job_id)
        assert wire["bidderId"] == str(event.bidder_id)
        assert wire["amount"] == "450.00"
        assert "timestamp" in wire
        assert "job_id" not in wire

    def test_parse_event_picks_the_variant_from_type(self):
        event = BidAccepted(
            job_id=uuid.uuid4(),
            actor_id=uuid.uuid4(),
            bid_id=uuid.uuid4(),
            bidder_id=uuid.uuid4(),
            amount=Decimal("500.00"),
            conversation_id=uuid.uuid4(),
        )

        parsed = parse_event(event.to_wire())

        assert isinstance(parsed, BidAccepted)
        assert parsed == event

    def test_system_events_have_no_actor(self):
        event = JobCancelled(job_id=uuid.uuid4(), reason="Ödeme süresi doldu")

        assert event.to_wire()["actorId"] is None
        assert event.audience().user_ids == ()

    def test_broadcast_filter_ignores_case_of_city(self):
        audience = BroadcastFilter(category="elektrik", city="istanbul")

        assert audience.matches("elektrik", "Istanbul")
        assert not audience.matches("tesisat", "Istanbul")
        assert not audience.matches("elektrik", "Ankara")
        assert BroadcastFilter().matches("tesisat", "Ankara")


class TestSessionRegistry:

    async def test_register_and_unregister(self):
        registry = SessionRegistry()
        user_id = uuid.uuid4()

        first = await registry.register(user_id, "sse")
        second = await registry.register(user_id, "websocket")
        assert await registry.count() == 2

        await registry.unregister(first)
        await registry.unregister(first)

        assert await registry.sessions_for(user_id) == [second]
        await registry.unregister(second)
        assert not await registry.is_online(user_id)
        assert await registry.count() == 0

    async def test_send_reaches_every_session_of_the_user(self):
        registry = SessionRegistry()
        user_id = uuid.uuid4()
        sse = await registry.register(user_id, "sse")
        ws = await registry.register(user_id, "websocket")
        await registry.register(uuid.uuid4(), "sse")

        delivered = await registry.send_to_user(user_id, {"type": "bid:new"})

        assert delivered == 2
        assert sse.queue.get_nowait() == {"type": "bid:new"}
        assert ws.queue.get_nowait() == {"type": "bid:new"}

    async def test_full_queue_counts_as_undelivered(self):
        registry = SessionRegistry(queue_size=1)
        user_id = uuid.uuid4()
        session = await registry.register(user_id, "sse")

        assert await registry.send_to_user(user_id, {"n": 1}) == 1
        assert await registry.send_to_user(user_id, {"n": 2}) == 0
        assert session.queue.qsize() == 1

    async def test_closed_session_refuses_messages(self):
        registry = SessionRegistry()
        session = await registry.register(uuid.uuid4(), "sse")
        await registry.unregister(session)

        assert session.offer({"type": "bid:new"}) is False

    async def test_broadcast_reaches_only_matching_available_electricians(self):
        registry = SessionRegistry()
        match = await registry.register(
            uuid.uuid4(), "sse", is_electrician=True, available=True, category="elektrik", city="Istanbul"
        )
        busy = await registry.register(
            uuid.uuid4(), "sse", is_electrician=True, available=False, category="elektrik", city="Istanbul"
        )
        elsewhere = await registry.register(
            uuid.uuid4(), "sse", is_electrician=True, available=True, category="elektrik", city="Izmir"
        )
        citizen = await registry.register(uuid.uuid4(), "sse", category="elektrik", city="Istanbul")

        delivered = await registry.broadcast({"type": "job:new"}, BroadcastFilter("elektrik", "Istanbul"))

        assert delivered == 1
        assert match.queue.qsize() == 1
        assert busy.queue.empty()
        assert elsewhere.queue.empty()
        assert citizen.queue.empty()

    async def test_availability_toggle_joins_the_job_feed(self):
        registry = SessionRegistry()
        user_id = uuid.uuid4()
        session = await registry.register(user_id, "websocket", is_electrician=True, available=False)

        await registry.set_availability(user_id, True)

        assert session.in_job_feed
        assert await registry.broadcast({"type": "job:new"}, BroadcastFilter()) == 1


class TestDelivery:

    async def test_online_recipient_gets_realtime_only(self, quick_dispatcher, sessions, push):
        owner_id = uuid.uuid4()
        live = await sessions.register(owner_id, "sse")
        event = _bid_new(owner_id)

        records = await quick_dispatcher.deliver(event)

        assert [(r.transport, r.outcome) for r in records] == [
            (DeliveryTransport.REALTIME, DeliveryOutcome.DELIVERED),
        ]
        assert live.queue.get_nowait() == event.to_wire()
        assert push.sent == []

    async def test_offline_recipient_gets_push(self, quick_dispatcher, push, make_user, session_maker):
        owner = await make_user(UserRole.CITIZEN)
        await _add_tokens(session_maker, owner.id, "tok-phone", "tok-tablet")

        records = await quick_dispatcher.deliver(_bid_new(owner.id))

        assert records[0].transport == DeliveryTransport.PUSH
        assert records[0].outcome == DeliveryOutcome.DELIVERED
        tokens, content = push.sent[0]
        assert sorted(tokens) == ["tok-phone", "tok-tablet"]
        assert content.title == "New bid"
        assert content.data["type"] == "bid:new"
        stored = await _tokens(session_maker, owner.id)
        assert stored["tok-phone"].last_used_at is not None

    async def test_offline_without_tokens_is_dropped(self, quick_dispatcher, push, make_user):
        owner = await make_user(UserRole.CITIZEN)

        records = await quick_dispatcher.deliver(_bid_new(owner.id))

        assert records[0].outcome == DeliveryOutcome.DROPPED
        assert records[0].detail == "no device tokens"
        assert push.sent == []

    async def test_transient_push_errors_are_retried(self, quick_dispatcher, push, make_user, session_maker):
        owner = await make_user(UserRole.CITIZEN)
        await _add_tokens(session_maker, owner.id, "tok-phone")
        push.outcomes = [OSError("connection reset"), UnavailableError("fcm down"), PushResult(success_count=1)]

        records = await quick_dispatcher.deliver(_bid_new(owner.id))

        assert records[0].outcome == DeliveryOutcome.DELIVERED
        assert records[0].attempts == 3
        assert len(push.sent) == 3

    async def test_push_is_dropped_after_the_last_attempt(self, quick_dispatcher, push, make_user, session_maker):
        owner = await make_user(UserRole.CITIZEN)
        await _add_tokens(session_maker, owner.id, "tok-phone")
        push.outcomes = [OSError("down")] * 3

        records = await quick_dispatcher.deliver(_bid_new(owner.id))

        assert records[0].outcome == DeliveryOutcome.DROPPED
        assert records[0].attempts == 3
        assert records[0].detail == "down"

    async def test_unexpected_push_error_fails_without_retry(self, quick_dispatcher, push, make_user, session_maker):
        owner = await make_user(UserRole.CITIZEN)
        await _add_tokens(session_maker, owner.id, "tok-phone")
        push.outcomes = [ValueError("bad payload")]

        records = await quick_dispatcher.deliver(_bid_new(owner.id))

        assert records[0].outcome == DeliveryOutcome.FAILED
        assert len(push.sent) == 1

    async def test_dead_tokens_are_deactivated(self, quick_dispatcher, push, make_user, session_maker):
        owner = await make_user(UserRole.CITIZEN)
        await _add_tokens(session_maker, owner.id, "tok-old", "tok-new")
        push.outcomes = [PushResult(success_count=1, failure_count=1, invalid_tokens=["tok-old"])]

        records = await quick_dispatcher.deliver(_bid_new(owner.id))

        assert records[0].outcome == DeliveryOutcome.DELIVERED
        stored = await _tokens(session_maker, owner.id)
        assert stored["tok-old"].is_active is False
        assert stored["tok-old"].failed_count == 1
        assert stored["tok-new"].is_active is True

    async def test_only_dead_tokens_drops_without_retry(self, quick_dispatcher, push, make_user, session_maker):
        owner = await make_user(UserRole.CITIZEN)
        await _add_tokens(session_maker, owner.id, "tok-old")
        push.outcomes = [PushResult(failure_count=1, invalid_tokens=["tok-old"])]

        records = await quick_dispatcher.deliver(_bid_new(owner.id))

        assert records[0].outcome == DeliveryOutcome.DROPPED
        assert len(push.sent) == 1

    async def test_disabled_push_drops(self, quick_dispatcher, push, make_user, session_maker):
        owner = await make_user(UserRole.CITIZEN)
        await _add_tokens(session_maker, owner.id, "tok-phone")
        push.enabled = False

        records = await quick_dispatcher.deliver(_bid_new(owner.id))

        assert records[0].outcome == DeliveryOutcome.DROPPED
        assert push.sent == []

    async def test_broadcast_never_falls_back_to_push(self, quick_dispatcher, push):
        records = await quick_dispatcher.deliver(_job_new())

        assert [(r.recipient_id, r.outcome) for r in records] == [(None, DeliveryOutcome.DROPPED)]
        assert push.sent == []

    async def test_duplicate_recipients_are_notified_once(self, quick_dispatcher, sessions):
        owner_id = uuid.uuid4()
        live = await sessions.register(owner_id, "sse")
        event = JobCancelled(job_id=uuid.uuid4(), reason="Vazgeçtim", recipient_ids=(owner_id, owner_id))

        records = await quick_dispatcher.deliver(event)

        assert len(records) == 1
        assert live.queue.qsize() == 1


class TestBackgroundWorker:

    async def test_published_events_are_logged(self, dispatcher, sessions, session_maker):
        owner_id = uuid.uuid4()
        await sessions.register(owner_id, "sse")
        event = _bid_new(owner_id)

        dispatcher.publish(event)
        await dispatcher.drain()

        async with session_maker() as session:
            rows = (await session.execute(select(NotificationLog))).scalars().all()
        assert [(r.event_type, r.job_id, r.recipient_id, r.transport, r.outcome) for r in rows] == [
            ("bid:new", event.job_id, owner_id, "realtime", "delivered"),
        ]

    async def test_publish_on_a_full_queue_drops_quietly(self, sessions, push, session_maker):
        dispatcher = NotificationDispatcher(sessions, push, session_maker, queue_size=1)

        dispatcher.publish(_bid_new(uuid.uuid4()), _bid_new(uuid.uuid4()))

        assert dispatcher._queue.qsize() == 1

    async def test_stop_flushes_queued_events(self, sessions, push, session_maker):
        dispatcher = NotificationDispatcher(sessions, push, session_maker, retry_backoff=0)
        owner_id = uuid.uuid4()
        live = await sessions.register(owner_id, "sse")
        await dispatcher.start()

        dispatcher.publish(_bid_new(owner_id), _bid_new(owner_id))
        await dispatcher.stop()

        assert not dispatcher.running
        assert live.queue.qsize() == 2
