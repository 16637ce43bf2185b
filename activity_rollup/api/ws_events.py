"""WebSocket endpoint for streaming event ingestion.

Path: /ws/events

One connection is one processing session: buckets touched earlier on the
connection are served from the session cache, and buckets that end before
the newest event seen on the connection are evicted from it, so the cache
stays bounded however long the connection lives.  Each message must match
the ActivityEvent schema; it is aggregated and acknowledged before the
next message is read.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from activity_rollup.domain.event import ActivityEvent
from activity_rollup.services.processing import EventAggregationService
from activity_rollup.store.base import AggregationStoreError

logger = logging.getLogger(__name__)


def create_event_stream_router(service: EventAggregationService) -> APIRouter:
    """Factory that wires the event stream endpoint to a service."""

    router = APIRouter()

    @router.websocket("/ws/events")
    async def stream_events(websocket: WebSocket) -> None:
        await websocket.accept()
        logger.info("Event source connected")

        async with service.session() as session:
            latest = None
            try:
                while True:
                    raw = await websocket.receive_json()

                    # ── Validate at the boundary ─────────────────────────
                    try:
                        event = ActivityEvent.model_validate(raw)
                    except ValidationError as exc:
                        await websocket.send_json({
                            "status": "error",
                            "reason": "invalid_event",
                            "detail": f"{exc.error_count()} validation error(s)",
                        })
                        continue

                    # ── Aggregate ────────────────────────────────────────
                    try:
                        handled = await service.process_event(event, session)
                    except AggregationStoreError as exc:
                        logger.warning("Event %s failed: %s", event.event_id, exc)
                        await websocket.send_json({
                            "status": "error",
                            "reason": "store_error",
                            "event_id": str(event.event_id),
                            "detail": str(exc),
                        })
                        continue

                    # Buckets the stream has moved past leave the cache.
                    if latest is None or event.timestamp > latest:
                        latest = event.timestamp
                        service.prune_session(session, latest)

                    # ── Acknowledge ──────────────────────────────────────
                    await websocket.send_json({
                        "status": "accepted",
                        "event_id": str(event.event_id),
                        "aggregators": handled,
                    })

            except WebSocketDisconnect:
                logger.info(
                    "Event source disconnected after %d event(s)",
                    session.events_received,
                )

    return router
