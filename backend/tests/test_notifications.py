from __future__ import annotations
from datetime import datetime, timedelta, timezone
from uuid import UUID
import httpx
import pytest
from sqlalchemy import select
from hubba.db import run_in_transaction
from hubba.models.notification import Notification
from hubba.services import bounties, challenges
from hubba.services.notifications import ExpoPushTransport, deliver_pending, is_valid_push_token

T0 = datetime(2026, 7, 4, 16, 0, tzinfo=timezone.utc)
TOKEN = "ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]"


class FakeTransport:
    def __init__(self, tickets=None, error: Exception | None = None):
        self.tickets = tickets
        self.error = error
        self.batches: list[list[dict]] = []

    async def send(self, messages):
        self.batches.append(messages)
        if self.error:
            raise self.error
        if self.tickets is not None:
            return self.tickets
        return [{"status": "ok", "id": f"ticket-{i}"} for i, _ in enumerate(messages)]


async def _outbox(session_factory, **filters) -> list[Notification]:
    async with session_factory() as session:
        stmt = select(Notification).order_by(Notification.created_at.asc())
        for field, value in filters.items():
            stmt = stmt.where(getattr(Notification, field) == value)
        return (await session.execute(stmt)).scalars().all()


def test_push_token_format():
    assert is_valid_push_token(TOKEN)
    assert is_valid_push_token("ExpoPushToken[abc]")
    assert not is_valid_push_token(None)
    assert not is_valid_push_token("")
    assert not is_valid_push_token("apns:deadbeef")
    assert not is_valid_push_token("ExponentPushToken[unterminated")


@pytest.mark.asyncio
async def test_challenge_transitions_fill_the_outbox(session_factory, make_user):
    await make_user("alice")
    await make_user("bob")
    created = await run_in_transaction(lambda s: challenges.create_challenge(
        s, "alice", opponent_id="bob", clip_ref="a.mp4", duration=8.0, now=T0,
    ))
    await run_in_transaction(lambda s: challenges.accept_challenge(
        s, "bob", UUID(created["challengeId"]), clip_ref="b.mp4", duration=8.0, now=T0 + timedelta(hours=1),
    ))

    received = await _outbox(session_factory, kind="challenge_received")
    accepted = await _outbox(session_factory, kind="challenge_accepted")
    assert [n.user_id for n in received] == ["bob"]
    assert [n.user_id for n in accepted] == ["alice"]
    assert received[0].data == {"challengeId": created["challengeId"]}
    assert received[0].status == "pending"


@pytest.mark.asyncio
async def test_claim_submission_notifies_creator_and_filmer(session_factory, make_user):
    await make_user("creator", wallet_balance=1000)
    await make_user("sk8r")
    await make_user("filmer")
    created = await run_in_transaction(lambda s: bounties.create_bounty(
        s, "creator", spot_id="spot", trick_desc="nollie flip", reward_total=500,
        expires_at=T0 + timedelta(days=3), now=T0,
    ))
    bounty_id = UUID(created["bountyId"])
    await run_in_transaction(lambda s: bounties.submit_claim(
        s, "sk8r", bounty_id, clip_path=f"claims/{bounty_id}/c1.mp4", duration=9.0, filmer_id="filmer", now=T0,
    ))

    assert [n.user_id for n in await _outbox(session_factory, kind="claim_submitted")] == ["creator"]
    assert [n.user_id for n in await _outbox(session_factory, kind="filmer_tagged")] == ["filmer"]


@pytest.mark.asyncio
async def test_expired_bounty_notifies_creator(session_factory, make_user):
    await make_user("creator", wallet_balance=1000)
    await run_in_transaction(lambda s: bounties.create_bounty(
        s, "creator", spot_id="spot", trick_desc="bs smith", reward_total=500,
        expires_at=T0 + timedelta(days=1), now=T0,
    ))
    await bounties.expire_bounties(now=T0 + timedelta(days=2))
    assert [n.user_id for n in await _outbox(session_factory, kind="bounty_expired")] == ["creator"]


@pytest.mark.asyncio
async def test_deliver_pending_sends_skips_and_marks(session_factory, make_user):
    await make_user("alice", push_token=TOKEN)
    await make_user("bob")
    await make_user("bob2", push_token="ExpoPushToken[bob2]")
    async with session_factory() as session:
        session.add_all([
            Notification(user_id=uid, kind="voting_open", title="Voting is open", body="go", data=data, created_at=T0 + timedelta(seconds=i))
            for i, (uid, data) in enumerate([("alice", {"challengeId": "c1"}), ("bob", {}), ("bob2", {})])
        ])
        await session.commit()

    transport = FakeTransport(tickets=[{"status": "ok", "id": "t1"}, {"status": "error", "message": "DeviceNotRegistered"}])
    counts = await deliver_pending(transport)

    assert counts == {"sent": 1, "failed": 1, "skipped": 1}
    assert len(transport.batches) == 1
    sent = transport.batches[0][0]
    assert sent["to"] == TOKEN
    assert sent["data"] == {"challengeId": "c1", "kind": "voting_open"}

    by_user = {n.user_id: n for n in await _outbox(session_factory)}
    assert by_user["alice"].status == "sent" and by_user["alice"].sent_at is not None
    assert by_user["bob"].status == "skipped"
    assert by_user["bob2"].status == "failed" and by_user["bob2"].error == "DeviceNotRegistered"

    # nothing pending is left to send
    assert await deliver_pending(FakeTransport()) == {"sent": 0, "failed": 0, "skipped": 0}


@pytest.mark.asyncio
async def test_transport_error_marks_batch_failed(session_factory, make_user):
    await make_user("alice", push_token=TOKEN)
    async with session_factory() as session:
        session.add(Notification(user_id="alice", kind="claim_paid", title="You got paid", body="720 credits"))
        await session.commit()

    counts = await deliver_pending(FakeTransport(error=httpx.ConnectError("push service down")))
    assert counts == {"sent": 0, "failed": 1, "skipped": 0}
    [row] = await _outbox(session_factory)
    assert row.status == "failed" and "push service down" in row.error


@pytest.mark.asyncio
async def test_expo_transport_posts_messages(monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = request.content
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "abc"}]})

    transport = ExpoPushTransport(url="https://push.test/send", access_token="secret")
    original = httpx.AsyncClient

    class MockedClient(original):
        def __init__(self, *args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(handler)
            super().__init__(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", MockedClient)
    tickets = await transport.send([{"to": TOKEN, "title": "t", "body": "b"}])

    assert tickets == [{"status": "ok", "id": "abc"}]
    assert seen["auth"] == "Bearer secret"
    assert TOKEN.encode() in seen["body"]
