"""Bucket identity and resolved interval information.

A bucket is one concrete time window of one granularity.  It is identified
by its date and time dimension keys (the calendar date and wall-clock time
of its start, in UTC).  IntervalInfo carries everything the aggregators
need to know about a bucket: its bounds, its total length, and how far into
the window a given instant lies.

Durations are whole minutes.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone

from pydantic import BaseModel, Field

from activity_rollup.domain.enums import Granularity


class TimestampOutsideBucketError(ValueError):
    """Raised when an instant is presented to a bucket that does not contain it.

    This signals a resolver/caller mismatch and is never retried.
    """

    def __init__(self, bucket: BucketIdentity, timestamp: datetime) -> None:
        self.bucket = bucket
        self.timestamp = timestamp
        super().__init__(f"{timestamp.isoformat()} lies outside bucket {bucket}")


class BucketIdentity(BaseModel):
    """(granularity, date key, time key) — uniquely identifies one window."""

    granularity: Granularity
    date_key: date
    time_key: time

    model_config = {"frozen": True}

    @property
    def start(self) -> datetime:
        """UTC instant the bucket starts at, rebuilt from its dimension keys."""
        return datetime.combine(self.date_key, self.time_key, tzinfo=timezone.utc)

    def __str__(self) -> str:
        return f"{self.granularity.value}@{self.date_key.isoformat()}T{self.time_key.isoformat()}"


class IntervalInfo(BaseModel):
    """Resolved bucket for one granularity and instant."""

    bucket: BucketIdentity
    start: datetime
    end: datetime
    total_duration: int = Field(..., ge=1, description="Bucket length in minutes")

    model_config = {"frozen": True}

    @property
    def granularity(self) -> Granularity:
        return self.bucket.granularity

    def contains(self, timestamp: datetime) -> bool:
        """True if *timestamp* lies in the half-open window [start, end)."""
        return self.start <= timestamp < self.end

    def elapsed_to(self, timestamp: datetime) -> int:
        """Whole minutes between the bucket start and *timestamp*.

        Defined for start <= timestamp <= end.

        Raises:
            TimestampOutsideBucketError: for any other instant.
        """
        if timestamp < self.start or timestamp > self.end:
            raise TimestampOutsideBucketError(self.bucket, timestamp)
        return int((timestamp - self.start).total_seconds() // 60)
