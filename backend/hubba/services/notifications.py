"""
Push notification fan-out.

Observers on the change bus turn committed state transitions into rows in
the `notifications` outbox; a background job drains the outbox through the
Expo push API.
"""
from __future__ import annotations
from itertools import zip_longest
from typing import Any, Protocol
import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from hubba.config import settings
from hubba.db import run_in_transaction, utcnow
from hubba.errors import InvalidArgument
from hubba.events import DocumentChange, bus
from hubba.models.bounty import Bounty
from hubba.models.notification import Notification
from hubba.models.user import User
from hubba.services.users import ensure_user

log = structlog.get_logger()

EXPO_TOKEN_PREFIXES = ("ExponentPushToken[", "ExpoPushToken[")


def is_valid_push_token(token: str | None) -> bool:
    return bool(token) and token.startswith(EXPO_TOKEN_PREFIXES) and token.endswith("]")


class PushTransport(Protocol):
    async def send(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]: ...


class ExpoPushTransport:
    def __init__(self, *, url: str | None = None, access_token: str | None = None, timeout: float = 10.0) -> None:
        self._url = url or settings.expo_push_url
        self._access_token = access_token if access_token is not None else settings.expo_access_token
        self._timeout = timeout

    async def send(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            r = await client.post(self._url, json=messages, headers=headers)
            r.raise_for_status()
            return r.json().get("data", [])


async def enqueue(
    session: AsyncSession,
    user_ids: list[str | None],
    *,
    kind: str,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
) -> list[Notification]:
    rows = []
    for uid in dict.fromkeys(u for u in user_ids if u):
        n = Notification(user_id=uid, kind=kind, title=title, body=body, data=data or {}, status="pending")
        session.add(n)
        rows.append(n)
    return rows


async def _notify(session_factory: async_sessionmaker | None, user_ids: list[str | None], **kwargs: Any) -> None:
    async def write(session: AsyncSession) -> None:
        await enqueue(session, user_ids, **kwargs)
    await run_in_transaction(write, session_factory=session_factory)


@bus.subscribe("challenges")
async def on_challenge_change(change: DocumentChange, *, session_factory: async_sessionmaker | None = None, **_) -> None:
    data = {"challengeId": str(change.key)}
    creator, opponent = change.value("creator_id"), change.value("opponent_id")

    if change.before is None:
        await _notify(session_factory, [opponent], kind="challenge_received", title="New challenge",
                      body="You've been challenged to a S.K.A.T.E. battle!", data=data)
    elif change.became("status", "opponent_uploading"):
        await _notify(session_factory, [creator], kind="challenge_accepted", title="Challenge accepted",
                      body="Your opponent accepted. Their clip is on the way.", data=data)
    elif change.became("status", "both_ready"):
        await _notify(session_factory, [creator, opponent], kind="voting_open", title="Voting is open",
                      body="Both clips are in. The community is voting now.", data=data)
    elif change.became("status", "completed"):
        winner = change.value("winner_id")
        if winner is None:
            await _notify(session_factory, [creator, opponent], kind="challenge_completed", title="It's a draw",
                          body="Your battle ended in a draw.", data={**data, "result": "draw"})
        else:
            loser = opponent if winner == creator else creator
            await _notify(session_factory, [winner], kind="challenge_completed", title="You won!",
                          body="The community picked your clip.", data={**data, "result": "won"})
            await _notify(session_factory, [loser], kind="challenge_completed", title="Battle over",
                          body="Your opponent took this one.", data={**data, "result": "lost"})


@bus.subscribe("challenge_clips")
async def on_clip_change(change: DocumentChange, *, session_factory: async_sessionmaker | None = None, **_) -> None:
    if not change.became("status", "rejected"):
        return
    await _notify(
        session_factory,
        [change.value("user_id")],
        kind="clip_rejected",
        title="Clip rejected",
        body="Your clip couldn't be used. Please upload a new one.",
        data={"challengeId": str(change.value("challenge_id")), "reason": change.value("rejection_reason")},
    )


@bus.subscribe("bounty_claims")
async def on_claim_change(change: DocumentChange, *, session_factory: async_sessionmaker | None = None, **_) -> None:
    data = {"bountyId": str(change.value("bounty_id")), "claimId": str(change.key)}
    claimer, filmer = change.value("claimer_id"), change.value("filmer_id")

    if change.before is None:
        async def creator_of(session: AsyncSession) -> str | None:
            return await session.scalar(select(Bounty.creator_id).where(Bounty.id == change.value("bounty_id")))
        creator = await run_in_transaction(creator_of, session_factory=session_factory)
        await _notify(session_factory, [creator], kind="claim_submitted", title="New claim",
                      body="Someone landed your bounty trick. Review the clip.", data=data)
        if filmer:
            await _notify(session_factory, [filmer], kind="filmer_tagged", title="You were tagged as filmer",
                          body="Confirm the tag to share the reward.", data=data)
    elif change.became("status", "APPROVED"):
        await _notify(session_factory, [claimer], kind="claim_approved", title="Claim approved",
                      body="Your claim was approved. Payout is on the way.", data=data)
    elif change.became("status", "REJECTED"):
        await _notify(session_factory, [claimer], kind="claim_rejected", title="Claim rejected",
                      body="Your claim was rejected.", data=data)
    elif change.became("status", "PAID"):
        await _notify(session_factory, [claimer], kind="claim_paid", title="You got paid",
                      body=f"{change.value('claimer_amount')} credits landed in your wallet.", data=data)
        if filmer and (change.value("filmer_amount") or 0) > 0:
            await _notify(session_factory, [filmer], kind="claim_paid", title="Filmer cut paid",
                          body=f"{change.value('filmer_amount')} credits landed in your wallet.", data=data)


@bus.subscribe("bounties")
async def on_bounty_change(change: DocumentChange, *, session_factory: async_sessionmaker | None = None, **_) -> None:
    if not change.became("status", "EXPIRED"):
        return
    await _notify(session_factory, [change.value("creator_id")], kind="bounty_expired", title="Bounty expired",
                  body="Nobody claimed your bounty in time. Most of the reward was refunded.",
                  data={"bountyId": str(change.key)})


async def deliver_pending(
    transport: PushTransport,
    *,
    session_factory: async_sessionmaker | None = None,
    batch_size: int = 100,
) -> dict[str, int]:
    async def deliver(session: AsyncSession) -> dict[str, int]:
        rows = (await session.execute(
            select(Notification)
            .where(Notification.status == "pending")
            .order_by(Notification.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )).scalars().all()
        counts = {"sent": 0, "failed": 0, "skipped": 0}
        if not rows:
            return counts

        tokens = dict((await session.execute(
            select(User.id, User.push_token).where(User.id.in_({n.user_id for n in rows}))
        )).all())
        outgoing: list[tuple[Notification, dict[str, Any]]] = []
        for n in rows:
            token = tokens.get(n.user_id)
            if not is_valid_push_token(token):
                n.status = "skipped"
                n.error = "no valid push token"
                counts["skipped"] += 1
                continue
            outgoing.append((n, {"to": token, "title": n.title, "body": n.body, "data": {**n.data, "kind": n.kind}, "sound": "default"}))

        if outgoing:
            try:
                tickets = await transport.send([m for _, m in outgoing])
            except httpx.HTTPError as exc:
                log.warning("push_send_failed", error=str(exc), batch=len(outgoing))
                for n, _ in outgoing:
                    n.status = "failed"
                    n.error = str(exc) or exc.__class__.__name__
                    counts["failed"] += 1
            else:
                now = utcnow()
                for pair, ticket in zip_longest(outgoing, tickets or []):
                    if pair is None:
                        break
                    n = pair[0]
                    if ticket and ticket.get("status") == "ok":
                        n.status = "sent"
                        n.sent_at = now
                        counts["sent"] += 1
                    else:
                        n.status = "failed"
                        n.error = (ticket or {}).get("message") or "missing push ticket"
                        counts["failed"] += 1
        return counts

    counts = await run_in_transaction(deliver, session_factory=session_factory)
    log.info("notifications_delivered", **counts)
    return counts


async def set_push_token(session: AsyncSession, actor_id: str, token: str | None) -> dict[str, Any]:
    """Register (or with None, forget) the device that receives the actor's pushes."""
    if token is not None and not is_valid_push_token(token):
        raise InvalidArgument("Not an Expo push token")
    user = await ensure_user(session, actor_id, lock=True)
    user.push_token = token
    log.info("push_token_updated", user_id=actor_id, registered=token is not None)
    return {"success": True, "registered": token is not None}
