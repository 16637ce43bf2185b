"""AggregateRecord — per-bucket, per-group activity counters.

One record exists per (bucket, group).  While open it tracks:
    - duration:      high-water mark of minutes elapsed since the bucket
                     start, over every event applied so far
    - participants:  the distinct participant ids seen in the bucket

Once completed, the duration equals the bucket's total length and the record
is frozen: further activity and further completion calls change nothing.
Out-of-order and duplicate events are therefore safe to reapply.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from activity_rollup.domain.interval import BucketIdentity
from activity_rollup.foundation.clock import utc_now
from activity_rollup.foundation.identifiers import record_id as derive_record_id


class AggregateRecord:
    """A mutable aggregate owned by the aggregation store.

    Concurrency note:
        Records handed out by a store are private copies.  Changes become
        durable only when written back through the store, which checks
        ``version`` to detect conflicting writers.
    """

    __slots__ = (
        "record_id",
        "bucket",
        "group",
        "duration",
        "participants",
        "completed",
        "version",
        "last_updated",
    )

    def __init__(
        self,
        bucket: BucketIdentity,
        group: str,
        record_id: UUID | None = None,
    ) -> None:
        self.record_id: UUID = record_id or derive_record_id(str(bucket), group)
        self.bucket: BucketIdentity = bucket
        self.group: str = group
        self.duration: int = 0
        self.participants: set[str] = set()
        self.completed: bool = False
        self.version: int = 0
        self.last_updated: datetime = utc_now()

    # ── Mutation ─────────────────────────────────────────────────────────

    def record_activity(self, participant_id: str, elapsed: int) -> bool:
        """Apply one event: raise the duration high-water mark, count the participant.

        Returns False (and changes nothing) if the record is already complete.
        """
        if self.completed:
            return False
        self.duration = max(self.duration, elapsed)
        self.participants.add(participant_id)
        self.last_updated = utc_now()
        return True

    def complete(self, total_duration: int) -> bool:
        """Close the record with the bucket's full length.

        Idempotent: returns False without touching anything when the record
        is already complete.
        """
        if self.completed:
            return False
        self.duration = total_duration
        self.completed = True
        self.last_updated = utc_now()
        return True

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def key(self) -> tuple[BucketIdentity, str]:
        return (self.bucket, self.group)

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def copy(self) -> AggregateRecord:
        """Deep copy, including the version the copy was taken at."""
        clone = AggregateRecord(self.bucket, self.group, record_id=self.record_id)
        clone.duration = self.duration
        clone.participants = set(self.participants)
        clone.completed = self.completed
        clone.version = self.version
        clone.last_updated = self.last_updated
        return clone

    def summary(self) -> dict:
        return {
            "record_id": str(self.record_id),
            "bucket": str(self.bucket),
            "group": self.group,
            "duration": self.duration,
            "participant_count": self.participant_count,
            "completed": self.completed,
            "version": self.version,
        }

    # ── Dunder ───────────────────────────────────────────────────────────

    def __repr__(self) -> str:
        return (
            f"AggregateRecord(bucket={self.bucket!s}, "
            f"group={self.group!r}, "
            f"duration={self.duration}, "
            f"participants={self.participant_count}, "
            f"completed={self.completed}, "
            f"v={self.version})"
        )
