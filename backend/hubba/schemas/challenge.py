from __future__ import annotations
from typing import Literal
from uuid import UUID
from datetime import datetime
from pydantic import Field
from hubba.schemas.base import CamelModel

ChallengeStatus = Literal["creator_ready", "opponent_uploading", "both_ready", "voting", "completed"]
ClipStatus = Literal["pending_upload", "processing", "ready", "rejected"]

class ClipUpload(CamelModel):
    clip_ref: str = Field(min_length=1, max_length=255)
    duration: float = Field(gt=0, allow_inf_nan=False)
    thumbnail: str | None = Field(default=None, max_length=512)

class ChallengeCreate(ClipUpload):
    opponent_id: str = Field(min_length=1, max_length=128)

class ChallengeVoteIn(CamelModel):
    voted_for_id: str = Field(min_length=1, max_length=128)

class ClipPublic(CamelModel):
    user_id: str
    storage_path: str
    thumbnail_path: str | None
    status: ClipStatus
    rejection_reason: str | None
    duration: float | None
    width: int | None
    height: int | None
    codec: str | None

class ChallengePublic(CamelModel):
    id: UUID
    creator_id: str
    opponent_id: str
    participants: list[str]
    status: ChallengeStatus
    deadline_at: datetime
    voting_opened_at: datetime | None
    voting_ends_at: datetime | None
    vote_tally: dict[str, int]
    winner_id: str | None
    result: Literal["winner", "draw"] | None
    completed_at: datetime | None
    created_at: datetime
    clips: list[ClipPublic] = []
