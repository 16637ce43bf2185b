"""REST endpoint for externally scheduled boundary closing.

Path: POST /api/boundaries/{granularity}?at=<instant>

Closes the bucket of *granularity* that ended most recently before *at*
(default: now) for every aggregator variant, then sweeps the bucket before
it for records nobody closed.  Safe to call repeatedly.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter

from activity_rollup.api.errors import store_http_error
from activity_rollup.domain.enums import Granularity
from activity_rollup.foundation.clock import as_utc, utc_now
from activity_rollup.services.processing import EventAggregationService
from activity_rollup.store.base import AggregationStoreError

logger = logging.getLogger(__name__)


def create_boundaries_router(service: EventAggregationService) -> APIRouter:
    """Factory that wires the boundary endpoint to a service."""

    router = APIRouter(prefix="/api", tags=["boundaries"])

    @router.post("/boundaries/{granularity}")
    async def close_boundary(
        granularity: Granularity,
        at: datetime | None = None,
    ) -> dict[str, Any]:
        now = as_utc(at) if at is not None else utc_now()
        interval = service.ended_before(granularity, now)
        try:
            reports = await service.handle_boundary(granularity, interval)
        except AggregationStoreError as exc:
            logger.warning("Closing %s failed: %s", interval.bucket, exc)
            raise store_http_error(exc) from exc
        return {
            "granularity": granularity.value,
            "bucket": str(interval.bucket),
            "start": interval.start.isoformat(),
            "end": interval.end.isoformat(),
            "reports": [r.model_dump(mode="json") for r in reports],
        }

    return router
