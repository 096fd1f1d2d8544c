from __future__ import annotations
from dataclasses import dataclass
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.models.ledger import LedgerTx

BPS = 10_000
PLATFORM_ACCOUNT = "platform"

LEDGER_TYPES = {"HOLD", "REFUND", "PAYOUT", "FEE"}


def escrow_account(bounty_id: UUID) -> str:
    return f"bounty:{bounty_id}"


@dataclass(frozen=True)
class PayoutBreakdown:
    reward_total: int
    platform_fee: int
    net_reward: int
    filmer_amount: int
    claimer_amount: int


def compute_payout(reward_total: int, *, platform_fee_bps: int, filmer_cut_bps: int, filmer_confirmed: bool) -> PayoutBreakdown:
    """
    Integer split of a bounty reward:
      fee    = reward * fee_bps // 10000
      net    = reward - fee
      filmer = net * filmer_bps // 10000   (0 unless the filmer confirmed)
      claimer = net - filmer
    Rounding remainders always stay with the claimer, so the parts sum to the reward.
    """
    if reward_total <= 0:
        raise ValueError("reward_total must be > 0")
    platform_fee = reward_total * platform_fee_bps // BPS
    net = reward_total - platform_fee
    filmer = net * filmer_cut_bps // BPS if filmer_confirmed else 0
    return PayoutBreakdown(
        reward_total=reward_total,
        platform_fee=platform_fee,
        net_reward=net,
        filmer_amount=filmer,
        claimer_amount=net - filmer,
    )


def compute_expiry_refund(reward_total: int, refund_bps: int) -> tuple[int, int]:
    """Returns (refund, retained) for a bounty that expired unclaimed."""
    refund = reward_total * refund_bps // BPS
    return refund, reward_total - refund


async def write_ledger_tx(
    session: AsyncSession,
    *,
    type: str,
    amount: int,
    currency: str,
    from_id: str | None = None,
    to_id: str | None = None,
    bounty_id: UUID | None = None,
    claim_id: str | None = None,
    memo: str | None = None,
    tx_id: str | None = None,
) -> LedgerTx:
    """
    Append a ledger entry. With a deterministic `tx_id`, writing the same
    entry twice returns the existing row instead of a duplicate.
    """
    if type not in LEDGER_TYPES:
        raise ValueError(f"unknown ledger type {type}")
    if tx_id is not None:
        existing = await session.get(LedgerTx, tx_id)
        if existing is not None:
            return existing
    entry = LedgerTx(
        type=type,
        amount=int(amount),
        currency=currency,
        from_id=from_id,
        to_id=to_id,
        bounty_id=bounty_id,
        claim_id=claim_id,
        memo=memo,
    )
    if tx_id is not None:
        entry.id = tx_id
    session.add(entry)
    await session.flush()
    return entry


async def entries_for_bounty(session: AsyncSession, bounty_id: UUID) -> list[LedgerTx]:
    return (await session.execute(
        select(LedgerTx).where(LedgerTx.bounty_id == bounty_id).order_by(LedgerTx.created_at.asc(), LedgerTx.id.asc())
    )).scalars().all()


async def entries_for_user(session: AsyncSession, user_id: str, limit: int = 100) -> list[LedgerTx]:
    return (await session.execute(
        select(LedgerTx)
        .where((LedgerTx.from_id == user_id) | (LedgerTx.to_id == user_id))
        .order_by(LedgerTx.created_at.desc())
        .limit(limit)
    )).scalars().all()


async def bounty_net(session: AsyncSession, bounty_id: UUID) -> int:
    """Σ(amount) for a bounty; zero once it is settled."""
    total = await session.scalar(
        select(func.coalesce(func.sum(LedgerTx.amount), 0)).where(LedgerTx.bounty_id == bounty_id)
    )
    return int(total or 0)
