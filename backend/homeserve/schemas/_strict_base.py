"""Strict pydantic bases: unknown fields are rejected instead of silently merged."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Base for response DTOs built from ORM rows."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Per-operation input type; every accepted field is declared on the subclass."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)


class FrozenConfigModel(BaseModel):
    """Immutable configuration snapshot handed to services per call."""

    model_config = ConfigDict(extra="forbid", frozen=True)
