"""Canonical ActivityEvent model — the contract between ingestion and aggregation.

An ActivityEvent records that one participant did something at one instant
while attached to a processing session.  The groups it carries are the
organisational groups of that session at the time the event was observed.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from activity_rollup.domain.enums import EventType
from activity_rollup.foundation.clock import as_utc
from activity_rollup.foundation.identifiers import new_id


class ActivityEvent(BaseModel):
    """A discrete user-activity event.

    Immutable after creation.  Validated at the boundary so downstream
    code never has to re-check field constraints.
    """

    event_id: UUID = Field(default_factory=new_id, description="Unique event identifier")
    event_type: EventType = Field(..., description="Controlled event classification")
    participant_id: str = Field(
        ...,
        min_length=1,
        max_length=256,
        description="Identifier of the user that produced the event",
    )
    timestamp: datetime = Field(..., description="When the event happened (normalised to UTC)")
    session_id: str = Field(
        ...,
        min_length=1,
        max_length=256,
        description="Opaque identifier of the user session the event belongs to",
    )
    groups: frozenset[str] = Field(
        default_factory=frozenset,
        description="Group identifiers the session belongs to",
    )

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def timestamp_must_be_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("groups")
    @classmethod
    def groups_must_be_named(cls, v: frozenset[str]) -> frozenset[str]:
        for group in v:
            if not group or len(group) > 256:
                raise ValueError(f"invalid group identifier: {group[:40]!r}")
        return v

    def with_groups(self, extra: frozenset[str]) -> ActivityEvent:
        """Return a copy whose group set also contains *extra*."""
        if extra <= self.groups:
            return self
        return self.model_copy(update={"groups": self.groups | extra})
