from __future__ import annotations
from typing import Literal
from uuid import UUID
from datetime import datetime
from pydantic import Field, StrictInt
from hubba.schemas.base import CamelModel

BountyStatus = Literal["OPEN", "LOCKED", "EXPIRED", "CANCELLED", "VERIFIED", "PAID"]
ClaimStatus = Literal["PENDING", "APPROVED", "REJECTED", "WITHDRAWN", "PAID"]
Decision = Literal["APPROVE", "REJECT"]

class BountyCreate(CamelModel):
    spot_id: str = Field(min_length=1, max_length=128)
    trick_desc: str = Field(min_length=1, max_length=280)
    reward_total: StrictInt  # credits; fractional rewards are rejected
    expires_at: datetime
    rules: str | None = Field(default=None, max_length=2000)

class ClaimCreate(CamelModel):
    clip_storage_path: str = Field(min_length=1, max_length=512)
    duration: float = Field(gt=0, allow_inf_nan=False)
    filmer_id: str | None = Field(default=None, max_length=128)

class FilmerResponse(CamelModel):
    accept: bool

class ClaimVoteIn(CamelModel):
    vote: Decision
    comment: str | None = Field(default=None, max_length=280)

class CreatorDecisionIn(CamelModel):
    decision: Decision
    note: str | None = Field(default=None, max_length=280)

class ClaimPublic(CamelModel):
    id: str
    bounty_id: UUID
    claimer_id: str
    clip_path: str
    duration: float | None
    filmer_id: str | None
    filmer_status: str | None
    status: ClaimStatus
    approve_count: int
    reject_count: int
    decision_role: str | None
    platform_fee: int | None
    net_reward: int | None
    claimer_amount: int | None
    filmer_amount: int | None
    paid_at: datetime | None
    created_at: datetime

class BountyPublic(CamelModel):
    id: UUID
    spot_id: str
    creator_id: str
    trick_desc: str
    rules: str | None
    reward_total: int
    currency: str
    platform_fee_bps: int
    filmer_cut_bps: int
    max_clip_seconds: int
    status: BountyStatus
    expires_at: datetime
    min_votes: int
    approve_ratio: float
    claim_count: int
    vote_count: int
    locked_at: datetime | None
    locked_reason: str | None
    created_at: datetime
    claims: list[ClaimPublic] = []
