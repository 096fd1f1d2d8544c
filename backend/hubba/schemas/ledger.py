from __future__ import annotations
from uuid import UUID
from datetime import datetime
from hubba.schemas.base import CamelModel

class LedgerEntryPublic(CamelModel):
    id: str
    type: str
    amount: int
    currency: str
    from_id: str | None = None
    to_id: str | None = None
    bounty_id: UUID | None = None
    claim_id: str | None = None
    memo: str | None = None
    created_at: datetime

class LedgerSnapshot(CamelModel):
    bounty_id: UUID | None = None
    net: int
    entries: list[LedgerEntryPublic]

class WalletPublic(CamelModel):
    user_id: str
    balance: int
    reputation: int
    is_banned: bool
    roles: list[str]
