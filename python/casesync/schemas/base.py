"""Shared schema base.

The HTTP surface speaks camelCase JSON; Python code uses snake_case field
names. Dump with model_dump(mode="json", by_alias=True).
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys; accepts either casing on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
