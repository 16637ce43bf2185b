"""REST endpoint for batch event ingestion.

Path: POST /api/events

Accepts a JSON list of events, validates every one at the boundary, and
aggregates the batch in a single processing session.  Responds with the
session's ProcessingReport once every write has been committed.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter

from activity_rollup.api.errors import store_http_error
from activity_rollup.domain.event import ActivityEvent
from activity_rollup.services.processing import EventAggregationService
from activity_rollup.store.base import AggregationStoreError

logger = logging.getLogger(__name__)


def create_events_router(service: EventAggregationService) -> APIRouter:
    """Factory that wires the batch ingestion endpoint to a service."""

    router = APIRouter(prefix="/api", tags=["events"])

    @router.post("/events")
    async def ingest_events(events: list[ActivityEvent]) -> dict[str, Any]:
        try:
            report = await service.process(events)
        except AggregationStoreError as exc:
            logger.warning("Batch of %d event(s) failed: %s", len(events), exc)
            raise store_http_error(exc) from exc
        return report.model_dump(mode="json")

    return router
