from __future__ import annotations
from typing import Literal
from pydantic import Field
from hubba.schemas.base import CamelModel

class RoleChange(CamelModel):
    target_uid: str = Field(min_length=1, max_length=128)
    role: str
    action: Literal["grant", "revoke"]

class AbuseReport(CamelModel):
    reason: str = Field(min_length=1, max_length=500)

class StorageFinalize(CamelModel):
    """Blob-store object-finalize notification."""
    name: str = Field(min_length=1, max_length=1024)
    generation: str | int
    metageneration: str | int = "1"
    content_type: str | None = None
    size: int | None = None
