from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean
from hubba.config import settings
from hubba.db import Base, JSONType, UTCDateTime, utcnow

class User(Base):
    """
    Actor record keyed by the identity provider's uid.
    Wallet, reputation and roles are only ever written by server logic.
    """
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    wallet_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # credits
    reputation: Mapped[int] = mapped_column(Integer, nullable=False, default=lambda: settings.reputation_baseline)
    is_banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    roles: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)  # admin|moderator|verified_pro
    push_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
