from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String
from hubba.db import Base, JSONType, UTCDateTime, utcnow

class ProcessedVideo(Base):
    """
    Idempotency record for blob-finalize events, keyed by
    sha256(path | generation | metageneration). Its presence means the event
    was (or is being) handled; rows are kept as an audit trail.
    """
    __tablename__ = "processed_videos"
    idempotency_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    path: Mapped[str] = mapped_column(String(512), index=True, nullable=False)
    generation: Mapped[str] = mapped_column(String(64), nullable=False)
    metageneration: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="processing")  # processing|done
    outcome: Mapped[str | None] = mapped_column(String(16), nullable=True)  # valid|rejected|ignored
    rejection_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    meta_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    # owned by one worker until claimed_at + lease
    claimed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
