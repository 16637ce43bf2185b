"""Immutable outcome reports returned by the processing service.

Pure data structures: they describe what a unit of work did, nothing more.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

from activity_rollup.domain.enums import Granularity


class ProcessingReport(BaseModel):
    """Outcome of aggregating one batch of events in one processing session."""

    session_id: UUID
    events_received: int = Field(..., ge=0)
    events_aggregated: int = Field(..., ge=0, description="Events handled by at least one aggregator")
    events_ignored: int = Field(..., ge=0, description="Events no aggregator supports")
    records_written: int = Field(..., ge=0, description="Aggregate record writes committed")

    model_config = {"frozen": True}


class BoundaryReport(BaseModel):
    """Outcome of closing one bucket for one aggregator variant."""

    aggregator: str
    granularity: Granularity
    bucket: str
    previous_bucket: str
    completed: int = Field(..., ge=0, description="Records closed directly")
    recovered: int = Field(..., ge=0, description="Records closed by the recovery sweep")

    model_config = {"frozen": True}
