from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, ForeignKey, UniqueConstraint, Uuid
from hubba.db import Base, JSONType, UTCDateTime, utcnow

class Challenge(Base):
    """
    Two-party battle. `status` only moves forward:
      creator_ready -> opponent_uploading -> both_ready -> voting -> completed
    """
    __tablename__ = "challenges"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    creator_id: Mapped[str] = mapped_column(String(128), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    opponent_id: Mapped[str] = mapped_column(String(128), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    participants: Mapped[list] = mapped_column(JSONType, nullable=False)  # [creator_id, opponent_id]
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="creator_ready", index=True)
    deadline_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    voting_opened_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    voting_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    vote_tally: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)  # participant id -> weight
    winner_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    result: Mapped[str | None] = mapped_column(String(16), nullable=True)  # winner|draw
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

class Clip(Base):
    """One clip per participant; mutated only by the validation pipeline and the challenge engine."""
    __tablename__ = "challenge_clips"
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    storage_path: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    thumbnail_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    declared_duration: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending_upload")  # pending_upload|processing|ready|rejected
    rejection_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    codec: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

class ChallengeVote(Base):
    __tablename__ = "challenge_votes"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    voter_id: Mapped[str] = mapped_column(String(128), nullable=False)
    voted_for_id: Mapped[str] = mapped_column(String(128), nullable=False)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("challenge_id", "voter_id", name="uq_challenge_vote_once_per_voter"),
    )
