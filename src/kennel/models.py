"""Pydantic models for desired and actual resource records.

Records are the unit the reconciliation core works on:
1. ``Record`` is one desired resource with its attributes fully resolved
2. ``ActualRecord`` is the remote representation of an existing resource
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from .resource_kinds import RESOURCE_KINDS, ResourceKind, get_kind

KENNEL_ID_PATTERN = r"^[a-z0-9][a-z0-9_\-]*$"


def _validate_resource_type(v: str) -> str:
    if v not in RESOURCE_KINDS:
        raise ValueError(f"resource_type must be one of {sorted(RESOURCE_KINDS)}")
    return v


class Record(BaseModel):
    """A desired-state resource owned by a project."""

    model_config = {"frozen": True, "extra": "forbid"}

    kennel_id: str = Field(pattern=KENNEL_ID_PATTERN)
    project_id: str = Field(pattern=KENNEL_ID_PATTERN)
    resource_type: str
    id: int | str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    # Definition file the record came from, used in error messages and markers
    source: str | None = None

    @field_validator("resource_type")
    @classmethod
    def validate_resource_type(cls, v: str) -> str:
        return _validate_resource_type(v)

    @property
    def tracking_id(self) -> str:
        """Globally unique ``project:resource`` identifier."""
        return f"{self.project_id}:{self.kennel_id}"

    @property
    def kind(self) -> ResourceKind:
        return get_kind(self.resource_type)

    def with_attributes(self, attributes: dict[str, Any]) -> Record:
        """Return a copy carrying different attributes."""
        return self.model_copy(update={"attributes": attributes})


class Project(BaseModel):
    """A named group of records sharing tags and a team."""

    model_config = {"frozen": True, "extra": "forbid"}

    kennel_id: str = Field(pattern=KENNEL_ID_PATTERN)
    records: list[Record] = Field(default_factory=list)
    source: str | None = None


class ActualRecord(BaseModel):
    """A resource as currently stored by the remote monitoring service."""

    model_config = {"frozen": True, "extra": "forbid"}

    resource_type: str
    id: int | str
    tracking_id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("resource_type")
    @classmethod
    def validate_resource_type(cls, v: str) -> str:
        return _validate_resource_type(v)

    @property
    def kind(self) -> ResourceKind:
        return get_kind(self.resource_type)

    @property
    def project_id(self) -> str | None:
        if self.tracking_id is None:
            return None
        return self.tracking_id.split(":", 1)[0]

    @classmethod
    def from_api(cls, resource_type: str, payload: dict[str, Any]) -> ActualRecord:
        """Build an actual record from a raw API payload.

        Args:
            resource_type: Kind name the payload was listed under.
            payload: JSON object returned by the API.

        Returns:
            ActualRecord with its tracking id parsed from the tracking marker.
        """
        kind = get_kind(resource_type)
        if "id" not in payload:
            raise ValueError(f"{resource_type} payload has no id")
        return cls(
            resource_type=resource_type,
            id=payload["id"],
            tracking_id=kind.tracking_id_of(payload),
            attributes=dict(payload),
        )
