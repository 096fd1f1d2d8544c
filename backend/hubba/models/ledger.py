from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Uuid
from hubba.db import Base, UTCDateTime, utcnow

class LedgerTx(Base):
    """
    Append-only funds movements. Rows are never updated or deleted.
    Sign convention:
      - HOLD   => negative (reward moved out of the creator's wallet into the bounty)
      - REFUND => positive (credit creator back from the bounty)
      - PAYOUT => positive (credit claimer / filmer from the bounty)
      - FEE    => positive (platform share of the bounty)

    Once a bounty is settled (PAID, EXPIRED, CANCELLED), Σ(amount) per bounty = 0.
    """
    __tablename__ = "ledger"

    id: Mapped[str] = mapped_column(String(160), primary_key=True, default=lambda: uuid.uuid4().hex)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # HOLD | REFUND | PAYOUT | FEE
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    from_id: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
    to_id: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
    bounty_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True, nullable=True)
    claim_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    memo: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
