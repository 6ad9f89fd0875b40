"""
End-to-end API tests: the marketplace flows driven over HTTP.
"""
import asyncio
import json

from src.modules.auth.models import UserRole
from src.modules.realtime.router import event_generator
from tests.conftest import WEBHOOK_HEADERS, auth_headers, job_payload

API = "/api/v1"


async def _post_job(client, owner, **overrides) -> dict:
    response = await client.post(f"{API}/jobs", json=job_payload(**overrides), headers=auth_headers(owner))
    assert response.status_code == 201, response.text
    return response.json()


async def _bid(client, job_id, bidder, amount="500.00"):
    return await client.post(
        f"{API}/jobs/{job_id}/bids",
        json={"amount": amount, "estimated_duration_hours": 2, "message": "Bugün gelebilirim."},
        headers=auth_headers(bidder),
    )


async def _accept(client, bid_id, owner):
    return await client.post(f"{API}/bids/{bid_id}/accept", headers=auth_headers(owner))


async def _capture(client, job_id, amount="500.00", reference="pay_001", headers=WEBHOOK_HEADERS):
    return await client.post(
        f"{API}/escrow/jobs/{job_id}/capture",
        json={"amount": amount, "external_reference": reference},
        headers=headers,
    )


class TestAcceptFlow:

    async def test_accept_picks_one_winner(self, client, citizen, electrician, other_electrician):
        job = await _post_job(client, citizen)
        x = (await _bid(client, job["id"], electrician, "500.00")).json()
        y = (await _bid(client, job["id"], other_electrician, "600.00")).json()

        response = await _accept(client, x["id"], citizen)

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["job_status"] == "in_progress"
        assert body["bid"]["status"] == "accepted"
        assert body["escrow_status"] == "pending_funding"
        assert body["conversation_id"] is not None

        bids = (await client.get(f"{API}/jobs/{job['id']}/bids", headers=auth_headers(citizen))).json()
        assert {b["id"]: b["status"] for b in bids["bids"]} == {x["id"]: "accepted", y["id"]: "rejected"}

        escrow = (await client.get(f"{API}/escrow/jobs/{job['id']}", headers=auth_headers(citizen))).json()
        assert escrow["status"] == "pending_funding"
        assert escrow["amount"] == "500.00"

    async def test_second_accept_conflicts(self, client, citizen, electrician, other_electrician):
        job = await _post_job(client, citizen)
        x = (await _bid(client, job["id"], electrician)).json()
        y = (await _bid(client, job["id"], other_electrician, "600.00")).json()
        await _accept(client, x["id"], citizen)

        response = await _accept(client, y["id"], citizen)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "BID_ALREADY_DECIDED"
        stored = (await client.get(f"{API}/jobs/{job['id']}", headers=auth_headers(citizen))).json()
        assert stored["accepted_bid_id"] == x["id"]
        assert stored["status"] == "in_progress"

    async def test_parallel_accepts_over_http_have_one_winner(self, client, citizen, electrician, other_electrician):
        job = await _post_job(client, citizen)
        x = (await _bid(client, job["id"], electrician)).json()
        y = (await _bid(client, job["id"], other_electrician, "600.00")).json()

        responses = await asyncio.gather(_accept(client, x["id"], citizen), _accept(client, y["id"], citizen))

        assert sorted(r.status_code for r in responses) == [200, 409]

    async def test_bidder_cannot_accept(self, client, citizen, electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()

        response = await _accept(client, bid["id"], electrician)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"


class TestBidding:

    async def test_duplicate_active_bid(self, client, citizen, electrician):
        job = await _post_job(client, citizen)
        assert (await _bid(client, job["id"], electrician)).status_code == 201

        response = await _bid(client, job["id"], electrician, "450.00")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE_ACTIVE_BID"

    async def test_citizen_cannot_bid(self, client, citizen, make_user):
        job = await _post_job(client, citizen)
        neighbour = await make_user(UserRole.CITIZEN)

        response = await _bid(client, job["id"], neighbour)

        assert response.status_code == 403

    async def test_invalid_amount_is_a_validation_error(self, client, citizen, electrician):
        job = await _post_job(client, citizen)

        response = await _bid(client, job["id"], electrician, "-5")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_withdraw_amend_and_mine(self, client, citizen, electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()
        headers = auth_headers(electrician)

        amended = await client.patch(f"{API}/bids/{bid['id']}", json={"amount": "480.00"}, headers=headers)
        assert amended.status_code == 200
        assert amended.json()["amount"] == "480.00"

        withdrawn = await client.delete(f"{API}/bids/{bid['id']}", headers=headers)
        assert withdrawn.json()["status"] == "withdrawn"
        again = await client.delete(f"{API}/bids/{bid['id']}", headers=headers)
        assert again.status_code == 200

        mine = (await client.get(f"{API}/bids/mine", params={"status": "withdrawn"}, headers=headers)).json()
        assert [b["id"] for b in mine["bids"]] == [bid["id"]]
        stored = (await client.get(f"{API}/jobs/{job['id']}", headers=headers)).json()
        assert stored["bid_count"] == 0

    async def test_other_bidders_cannot_see_a_bid(self, client, citizen, electrician, other_electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()

        assert (await client.get(f"{API}/bids/{bid['id']}", headers=auth_headers(citizen))).status_code == 200
        hidden = await client.get(f"{API}/bids/{bid['id']}", headers=auth_headers(other_electrician))
        assert hidden.status_code == 404

    async def test_open_jobs_feed_filters_by_city(self, client, citizen, electrician):
        await _post_job(client, citizen, title="Avize takılacak", city="Istanbul")
        await _post_job(client, citizen, title="Priz yanık", city="Ankara")

        response = await client.get(f"{API}/jobs", params={"city": "Ankara"}, headers=auth_headers(electrician))

        body = response.json()
        assert body["total"] == 1
        assert body["jobs"][0]["title"] == "Priz yanık"

    async def test_open_jobs_feed_pages_in_the_database(self, client, citizen, electrician):
        for n in range(3):
            await _post_job(client, citizen, title=f"Ankara iş {n}", city="Ankara")
        await _post_job(client, citizen, title="İstanbul iş", city="Istanbul")

        first = await client.get(
            f"{API}/jobs", params={"city": " ankara ", "page_size": 2}, headers=auth_headers(electrician)
        )
        second = await client.get(
            f"{API}/jobs", params={"city": "ANKARA", "page": 2, "page_size": 2}, headers=auth_headers(electrician)
        )

        assert first.json()["total"] == second.json()["total"] == 3
        titles = [job["title"] for job in first.json()["jobs"] + second.json()["jobs"]]
        assert sorted(titles) == ["Ankara iş 0", "Ankara iş 1", "Ankara iş 2"]


class TestJobEdits:

    async def test_owner_edits_job_and_feed_follows_new_city(self, client, citizen, electrician):
        job = await _post_job(client, citizen, city="Istanbul")

        response = await client.patch(
            f"{API}/jobs/{job['id']}",
            json={"title": "Sigorta ve priz", "urgency": "high", "location": {"city": "Izmir"}},
            headers=auth_headers(citizen),
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["title"] == "Sigorta ve priz"
        assert body["urgency"] == "high"
        assert body["location"]["city"] == "Izmir"
        assert body["location"]["district"] == "Kadıköy"
        feed = await client.get(f"{API}/jobs", params={"city": "izmir"}, headers=auth_headers(electrician))
        assert [j["id"] for j in feed.json()["jobs"]] == [job["id"]]

    async def test_only_the_owner_edits(self, client, citizen, make_user):
        job = await _post_job(client, citizen)
        stranger = await make_user(UserRole.CITIZEN)

        response = await client.patch(
            f"{API}/jobs/{job['id']}", json={"title": "Başkasının işi"}, headers=auth_headers(stranger)
        )

        assert response.status_code == 403

    async def test_job_with_accepted_bid_is_not_editable(self, client, citizen, electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()
        await _accept(client, bid["id"], citizen)

        response = await client.patch(
            f"{API}/jobs/{job['id']}", json={"title": "Geç kalmış düzeltme"}, headers=auth_headers(citizen)
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "JOB_NOT_EDITABLE"


class TestCompletion:

    async def test_funded_job_completes_once(self, client, citizen, electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()
        await _accept(client, bid["id"], citizen)
        assert (await _capture(client, job["id"])).json()["status"] == "funded"

        first = await client.post(f"{API}/jobs/{job['id']}/complete", headers=auth_headers(citizen))
        second = await client.post(f"{API}/jobs/{job['id']}/complete", headers=auth_headers(citizen))

        assert first.status_code == 200
        assert first.json()["status"] == "completed"
        assert second.status_code == 200
        assert second.json()["completed_at"][:19] == first.json()["completed_at"][:19]

        escrow = (await client.get(f"{API}/escrow/jobs/{job['id']}", headers=auth_headers(electrician))).json()
        assert escrow["status"] == "released"
        assert [(p["kind"], p["amount"]) for p in escrow["payments"]] == [
            ("capture", "500.00"),
            ("payout", "500.00"),
        ]

        review = await client.post(
            f"{API}/jobs/{job['id']}/reviews",
            json={"rating": 5, "comment": "Çok memnun kaldım"},
            headers=auth_headers(citizen),
        )
        assert review.status_code == 201
        me = (await client.get(f"{API}/auth/me", headers=auth_headers(electrician))).json()
        assert me["total_reviews"] == 1

    async def test_complete_before_funding_conflicts(self, client, citizen, electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()
        await _accept(client, bid["id"], citizen)

        response = await client.post(f"{API}/jobs/{job['id']}/complete", headers=auth_headers(citizen))

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ESCROW_NOT_FUNDED"

    async def test_capture_requires_the_webhook_secret(self, client, citizen, electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()
        await _accept(client, bid["id"], citizen)

        missing = await _capture(client, job["id"], headers={})
        wrong = await _capture(client, job["id"], headers={"X-Payment-Webhook-Secret": "guess"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        escrow = (await client.get(f"{API}/escrow/jobs/{job['id']}", headers=auth_headers(citizen))).json()
        assert escrow["status"] == "pending_funding"


class TestCancellation:

    async def test_cancel_open_job_without_bids(self, client, citizen):
        job = await _post_job(client, citizen)

        response = await client.post(
            f"{API}/jobs/{job['id']}/cancel", json={"reason": "no response"}, headers=auth_headers(citizen)
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "no response"
        escrow = await client.get(f"{API}/escrow/jobs/{job['id']}", headers=auth_headers(citizen))
        assert escrow.status_code == 404

    async def test_stranger_cannot_cancel(self, client, citizen, make_user):
        job = await _post_job(client, citizen)
        stranger = await make_user(UserRole.CITIZEN)

        response = await client.post(
            f"{API}/jobs/{job['id']}/cancel", json={"reason": "troll"}, headers=auth_headers(stranger)
        )

        assert response.status_code == 403


class TestConversations:

    async def test_participants_exchange_messages(self, client, citizen, electrician, other_electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()
        await _bid(client, job["id"], other_electrician, "650.00")
        conversation_id = (await _accept(client, bid["id"], citizen)).json()["conversation_id"]
        url = f"{API}/conversations/{conversation_id}/messages"

        sent = await client.post(url, json={"content": "  Kapı kodu 1234  "}, headers=auth_headers(citizen))
        assert sent.status_code == 201
        assert sent.json()["content"] == "Kapı kodu 1234"

        inbox = (await client.get(f"{API}/conversations", headers=auth_headers(electrician))).json()
        assert inbox["conversations"][0]["electrician_unread_count"] == 1
        read = await client.post(f"{API}/conversations/{conversation_id}/read", headers=auth_headers(electrician))
        assert read.json()["electrician_unread_count"] == 0

        outsider = await client.get(url, headers=auth_headers(other_electrician))
        assert outsider.status_code == 404
        assert outsider.json()["error"]["code"] == "CONVERSATION_NOT_FOUND"

    async def test_archived_conversation_is_read_only(self, client, citizen, electrician):
        job = await _post_job(client, citizen)
        bid = (await _bid(client, job["id"], electrician)).json()
        conversation_id = (await _accept(client, bid["id"], citizen)).json()["conversation_id"]
        await client.post(f"{API}/jobs/{job['id']}/cancel", json={"reason": "Vazgeçtim"}, headers=auth_headers(citizen))

        response = await client.post(
            f"{API}/conversations/{conversation_id}/messages",
            json={"content": "Merhaba"},
            headers=auth_headers(electrician),
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONVERSATION_ARCHIVED"


class TestAuthAndProfile:

    async def test_requests_without_token_are_rejected(self, client):
        response = await client.get(f"{API}/jobs")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    async def test_garbage_token_is_rejected(self, client):
        response = await client.get(f"{API}/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    async def test_availability_toggle_updates_live_sessions(self, app, client, make_user):
        electrician = await make_user(UserRole.ELECTRICIAN, is_available=False)
        live = await app.state.sessions.register(electrician.id, "sse", is_electrician=True, available=False)

        response = await client.patch(
            f"{API}/auth/me", json={"is_available": True}, headers=auth_headers(electrician)
        )

        assert response.json()["is_available"] is True
        assert live.in_job_feed

    async def test_device_token_registration(self, client, citizen):
        headers = auth_headers(citizen)
        token = "fcm-token-" + "a" * 40

        created = await client.post(
            f"{API}/notifications/device-tokens", json={"token": token, "platform": "ios"}, headers=headers
        )
        assert created.status_code == 201
        listed = (await client.get(f"{API}/notifications/device-tokens", headers=headers)).json()
        assert listed["total"] == 1
        assert listed["tokens"][0]["platform"] == "ios"

        deleted = await client.delete(f"{API}/notifications/device-tokens/{token}", headers=headers)
        assert deleted.status_code == 204
        missing = await client.delete(f"{API}/notifications/device-tokens/{token}", headers=headers)
        assert missing.status_code == 404


class TestRealtime:

    async def test_new_job_reaches_matching_electricians(self, app, client, citizen, electrician):
        live = await app.state.sessions.register(
            electrician.id, "sse", is_electrician=True, available=True, category="elektrik", city="Istanbul"
        )

        job = await _post_job(client, citizen)
        await app.state.dispatcher.drain()

        event = live.queue.get_nowait()
        assert event["type"] == "job:new"
        assert event["jobId"] == job["id"]

    async def test_accept_notifies_winner_and_losers(self, app, client, citizen, electrician, other_electrician):
        winner_session = await app.state.sessions.register(electrician.id, "websocket")
        loser_session = await app.state.sessions.register(other_electrician.id, "websocket")
        job = await _post_job(client, citizen)
        x = (await _bid(client, job["id"], electrician)).json()
        await _bid(client, job["id"], other_electrician, "600.00")

        conversation_id = (await _accept(client, x["id"], citizen)).json()["conversation_id"]
        await app.state.dispatcher.drain()

        accepted = winner_session.queue.get_nowait()
        assert accepted["type"] == "bid:accepted"
        assert accepted["conversationId"] == conversation_id
        assert loser_session.queue.get_nowait()["type"] == "bid:rejected"

    async def test_sse_frames(self, app, citizen):
        class _Request:
            def __init__(self):
                self.polls = 0

            async def is_disconnected(self):
                self.polls += 1
                return self.polls > 2

        registry = app.state.sessions
        session = await registry.register(citizen.id, "sse")
        session.offer({"type": "bid:new", "jobId": "j-1"})

        frames = [frame async for frame in event_generator(_Request(), registry, session)]

        assert frames[0].startswith("event: connected\n")
        assert frames[1] == f"event: bid:new\ndata: {json.dumps({'type': 'bid:new', 'jobId': 'j-1'})}\n\n"
        assert frames[2].startswith("event: heartbeat\n")
        assert len(frames) == 3
        assert await registry.count() == 0
