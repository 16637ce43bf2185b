"""Mapping from store failures to HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException

from activity_rollup.store.base import (
    AggregationStoreError,
    RecordExistsError,
    StaleRecordError,
    StoreUnavailableError,
)


def store_http_error(exc: AggregationStoreError) -> HTTPException:
    """503 for an unavailable store, 409 for unresolved write conflicts, else 500."""
    if isinstance(exc, StoreUnavailableError):
        return HTTPException(status_code=503, detail=f"Aggregation store unavailable: {exc}")
    if isinstance(exc, (StaleRecordError, RecordExistsError)):
        return HTTPException(status_code=409, detail=f"Conflicting concurrent write: {exc}")
    return HTTPException(status_code=500, detail=str(exc))
