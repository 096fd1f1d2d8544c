from __future__ import annotations
from pydantic import Field
from hubba.schemas.base import CamelModel

class PushTokenIn(CamelModel):
    token: str = Field(min_length=1, max_length=255)
