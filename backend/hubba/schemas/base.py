from __future__ import annotations
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    """Mobile clients speak camelCase; snake_case names are accepted too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)
