"""activity-rollup — time-windowed activity aggregation service.

This is the application entry point.  It wires the IntervalResolver,
aggregation stores, AggregatorRegistry, EventAggregationService,
BoundaryTicker and HTTP/WebSocket endpoints together.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

from fastapi import FastAPI

from activity_rollup.aggregators.registry import AggregatorRegistry
from activity_rollup.aggregators.variants import activity_aggregator, login_aggregator
from activity_rollup.api.boundaries import create_boundaries_router
from activity_rollup.api.events import create_events_router
from activity_rollup.api.ws_events import create_event_stream_router
from activity_rollup.config import settings
from activity_rollup.core.interval_resolver import IntervalResolver
from activity_rollup.services.processing import EventAggregationService
from activity_rollup.services.scheduler import BoundaryTicker
from activity_rollup.store.groups import InMemoryGroupResolver
from activity_rollup.store.memory_store import InMemoryAggregationStore

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

# ── Stores ───────────────────────────────────────────────────────────────────

resolver = IntervalResolver()
login_store = InMemoryAggregationStore("login")
activity_store = InMemoryAggregationStore("activity")

# ── Aggregator Registry ──────────────────────────────────────────────────────

registry = AggregatorRegistry()
registry.register(login_aggregator(login_store, resolver, settings.max_write_attempts))
registry.register(activity_aggregator(activity_store, resolver, settings.max_write_attempts))

# ── Service ──────────────────────────────────────────────────────────────────

group_resolver = InMemoryGroupResolver(default_groups=settings.default_groups)

service = EventAggregationService(
    registry=registry,
    resolver=resolver,
    granularities=settings.tracked_granularities,
    group_resolver=group_resolver,
    grace=timedelta(seconds=settings.boundary_grace_seconds),
)

ticker = (
    BoundaryTicker(service, settings.boundary_tick_seconds)
    if settings.boundary_tick_seconds > 0
    else None
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if ticker is not None:
        ticker.start()
    try:
        yield
    finally:
        if ticker is not None:
            await ticker.stop()


# ── App ──────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.app_name,
    description="Multi-granularity, time-windowed activity aggregation",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

# ── Routes ───────────────────────────────────────────────────────────────────

app.include_router(create_events_router(service))
app.include_router(create_event_stream_router(service))
app.include_router(create_boundaries_router(service))


# ── Health ───────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "tracked_granularities": [g.value for g in service.granularities],
        "aggregators": registry.stats,
        "dispatch": registry.dispatch_table,
        "ignored_events": registry.ignored_count,
        "stores": [await a.store.summary() for a in registry.aggregators],
        "boundary_ticker": ticker is not None and ticker.running,
    }
