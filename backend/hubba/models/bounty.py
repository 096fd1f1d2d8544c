from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Text, ForeignKey, UniqueConstraint, Uuid
from hubba.db import Base, UTCDateTime, utcnow

class Bounty(Base):
    __tablename__ = "bounties"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    spot_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    creator_id: Mapped[str] = mapped_column(String(128), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    trick_desc: Mapped[str] = mapped_column(String(280), nullable=False)
    rules: Mapped[str | None] = mapped_column(Text(), nullable=True)
    reward_total: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    platform_fee_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    filmer_cut_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    max_clip_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="OPEN", index=True)  # OPEN|LOCKED|EXPIRED|CANCELLED|VERIFIED|PAID
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    min_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    approve_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    # counters are maintained by server logic only
    claim_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    locked_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

class Claim(Base):
    __tablename__ = "bounty_claims"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)  # taken from claims/{bounty}/{claim}.mp4
    bounty_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bounties.id", ondelete="CASCADE"), index=True, nullable=False)
    claimer_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    clip_path: Mapped[str] = mapped_column(String(512), nullable=False)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    filmer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    filmer_status: Mapped[str | None] = mapped_column(String(16), nullable=True)  # pending|confirmed|declined
    filmer_responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")  # PENDING|APPROVED|REJECTED|WITHDRAWN|PAID
    approve_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reject_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weighted_approve: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weighted_reject: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_vote_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    decision_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    decision_role: Mapped[str | None] = mapped_column(String(16), nullable=True)  # AUTO|CREATOR
    decision_note: Mapped[str | None] = mapped_column(String(280), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    # payout breakdown, set once when PAID
    platform_fee: Mapped[int | None] = mapped_column(Integer, nullable=True)
    net_reward: Mapped[int | None] = mapped_column(Integer, nullable=True)
    claimer_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    filmer_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("bounty_id", "claimer_id", name="uq_claim_one_per_claimer"),
    )

class ClaimVote(Base):
    __tablename__ = "claim_votes"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    claim_id: Mapped[str] = mapped_column(String(128), ForeignKey("bounty_claims.id", ondelete="CASCADE"), index=True, nullable=False)
    voter_id: Mapped[str] = mapped_column(String(128), nullable=False)
    vote: Mapped[str] = mapped_column(String(8), nullable=False)  # APPROVE|REJECT
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    comment: Mapped[str | None] = mapped_column(String(280), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("claim_id", "voter_id", name="uq_claim_vote_once_per_voter"),
    )
