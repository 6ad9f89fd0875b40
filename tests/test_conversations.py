"""
Conversation gate tests: opened on accept, participants only, archived when
the job ends.
"""
import asyncio
from decimal import Decimal

import pytest

from src.core.exceptions import ConversationArchived, ConversationNotFound
from src.modules.auth.models import UserRole
from src.modules.conversations.models import Conversation
from src.modules.conversations.service import ConversationGate


@pytest.fixture
def gate(db, dispatcher) -> ConversationGate:
    return ConversationGate(db, dispatcher)


@pytest.fixture
async def conversation(citizen, electrician, post_job, place_bid, accept_bid):
    job = await post_job(citizen)
    bid = await place_bid(job, electrician)
    outcome = await accept_bid(job, bid, citizen)
    return outcome.conversation


class TestGate:

    async def test_no_conversation_before_accept(self, citizen, electrician, post_job, place_bid, gate):
        job = await post_job(citizen)
        await place_bid(job, electrician)

        assert await gate.get_for_job(job.id) is None
        assert await gate.list_for_user(electrician.id) == []

    async def test_accept_opens_one_conversation_between_owner_and_winner(
        self, conversation, gate, citizen, electrician
    ):
        stored = await gate.get_for_job(conversation.job_id)

        assert stored.id == conversation.id
        assert (stored.citizen_id, stored.electrician_id) == (citizen.id, electrician.id)
        assert not stored.is_archived
        assert [c.id for c in await gate.list_for_user(citizen.id)] == [conversation.id]

    async def test_rejected_bidder_has_no_access(
        self, citizen, electrician, other_electrician, post_job, place_bid, accept_bid, gate
    ):
        job = await post_job(citizen)
        winner = await place_bid(job, electrician)
        await place_bid(job, other_electrician, "450.00")
        outcome = await accept_bid(job, winner, citizen)

        with pytest.raises(ConversationNotFound):
            await gate.send_message(outcome.conversation.id, other_electrician.id, "Merhaba?")
        with pytest.raises(ConversationNotFound):
            await gate.list_messages(outcome.conversation.id, other_electrician.id)
        assert await gate.list_for_user(other_electrician.id) == []

    async def test_stranger_gets_not_found(self, conversation, gate, make_user):
        stranger = await make_user(UserRole.ELECTRICIAN)

        with pytest.raises(ConversationNotFound) as exc_info:
            await gate.get_for_participant(conversation.id, stranger.id)
        assert exc_info.value.status_code == 404


class TestMessages:

    async def test_send_updates_unread_and_preview(self, conversation, gate, citizen, electrician):
        message = await gate.send_message(conversation.id, citizen.id, "Saat kaçta gelirsiniz?")

        assert message.sender_id == citizen.id
        assert message.recipient_id == electrician.id
        stored = await gate.get_for_participant(conversation.id, electrician.id)
        assert stored.electrician_unread_count == 1
        assert stored.citizen_unread_count == 0
        assert stored.last_message_preview == "Saat kaçta gelirsiniz?"

    async def test_concurrent_sends_count_every_message(
        self, conversation, citizen, electrician, session_maker, dispatcher
    ):
        async def send(n):
            async with session_maker() as session:
                gate = ConversationGate(session, dispatcher)
                return await gate.send_message(conversation.id, citizen.id, f"Mesaj {n}")

        await asyncio.gather(*(send(n) for n in range(5)))

        async with session_maker() as session:
            stored = await session.get(Conversation, conversation.id)
            assert stored.electrician_unread_count == 5
            assert stored.citizen_unread_count == 0
            assert len(await ConversationGate(session).list_messages(conversation.id, electrician.id)) == 5

    async def test_send_notifies_the_other_participant(self, conversation, gate, sessions, dispatcher, electrician):
        live = await sessions.register(electrician.id, "sse")

        message = await gate.send_message(conversation.id, conversation.citizen_id, "Merhaba")
        await dispatcher.drain()

        event = live.queue.get_nowait()
        assert event["type"] == "message:new"
        assert event["messageId"] == str(message.id)
        assert event["conversationId"] == str(conversation.id)

    async def test_mark_read_clears_own_unread_only(self, conversation, gate, citizen, electrician):
        await gate.send_message(conversation.id, citizen.id, "Bir")
        await gate.send_message(conversation.id, citizen.id, "İki")
        await gate.send_message(conversation.id, electrician.id, "Tamam")

        read = await gate.mark_read(conversation.id, electrician.id)

        assert read.electrician_unread_count == 0
        assert read.citizen_unread_count == 1
        messages = await gate.list_messages(conversation.id, electrician.id)
        assert [(m.content, m.is_read) for m in messages] == [
            ("Bir", True),
            ("İki", True),
            ("Tamam", False),
        ]

    async def test_list_messages_pages_backwards(self, conversation, gate, citizen):
        sent = [await gate.send_message(conversation.id, citizen.id, f"Mesaj {n}") for n in range(5)]

        latest = await gate.list_messages(conversation.id, citizen.id, limit=2)
        older = await gate.list_messages(conversation.id, citizen.id, limit=2, before=latest[0].id)

        assert [m.id for m in latest] == [sent[3].id, sent[4].id]
        assert [m.id for m in older] == [sent[1].id, sent[2].id]


class TestArchive:

    async def test_completed_job_archives_the_conversation(self, conversation, gate, jobs, citizen, electrician):
        await gate.send_message(conversation.id, electrician.id, "Yoldayım")
        await jobs.confirm_funding(conversation.job_id, Decimal("500.00"), "pay_001")
        await jobs.complete(conversation.job_id, citizen)

        with pytest.raises(ConversationArchived):
            await gate.send_message(conversation.id, citizen.id, "Teşekkürler")

        history = await gate.list_messages(conversation.id, citizen.id)
        assert [m.content for m in history] == ["Yoldayım"]
        read = await gate.mark_read(conversation.id, citizen.id)
        assert read.citizen_unread_count == 0

    async def test_cancelled_job_archives_the_conversation(self, conversation, gate, jobs, citizen, electrician):
        await jobs.cancel(conversation.job_id, citizen, "Vazgeçtim")

        with pytest.raises(ConversationArchived) as exc_info:
            await gate.send_message(conversation.id, electrician.id, "Neden?")
        assert exc_info.value.code == "CONVERSATION_ARCHIVED"
