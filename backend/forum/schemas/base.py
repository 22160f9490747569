"""Base schema configuration."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        str_strip_whitespace=True,
        validate_assignment=True,
        alias_generator=to_camel,  # Wire format is camelCase (isPinned, moreExist, ...)
        populate_by_name=True,
    )


class IDMixin(BaseModel):
    """Mixin for integer primary key."""

    id: int
