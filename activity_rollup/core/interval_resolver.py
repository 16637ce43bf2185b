"""IntervalResolver — pure calendar arithmetic for bucket resolution.

Design principles:
    1. Pure function of (granularity, instant): same input, same output.
    2. No side effects, no state, no I/O.
    3. All arithmetic happens in UTC; the returned bounds are UTC-aware.

Bucket starts:
    minute-based   floor to a multiple of 1 / 5 / 10 / 15 minutes in the hour
    hour           top of the hour
    day            midnight
    week           Monday midnight (ISO week)
    month          first day of the month
    quarter        first day of the calendar quarter
    year           January 1st

A bucket's end is the start of the following bucket, so months, quarters
and years have calendar-dependent lengths.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from activity_rollup.domain.enums import Granularity
from activity_rollup.domain.interval import BucketIdentity, IntervalInfo
from activity_rollup.foundation.clock import as_utc

_MINUTE_STEPS: dict[Granularity, int] = {
    Granularity.MINUTE: 1,
    Granularity.FIVE_MINUTE: 5,
    Granularity.TEN_MINUTE: 10,
    Granularity.FIFTEEN_MINUTE: 15,
}

# One minimal calendar step: the smallest resolution any bucket boundary has.
_MINIMAL_STEP = timedelta(minutes=1)


def _add_months(dt: datetime, months: int) -> datetime:
    """Shift a first-of-month instant by whole months."""
    index = dt.year * 12 + (dt.month - 1) + months
    return dt.replace(year=index // 12, month=index % 12 + 1)


class IntervalResolver:
    """Resolves instants to buckets for every supported granularity."""

    def resolve(self, granularity: Granularity, timestamp: datetime) -> IntervalInfo:
        """Return the bucket of *granularity* containing *timestamp*."""
        start = self._floor(granularity, as_utc(timestamp))
        end = self._advance(granularity, start)
        return IntervalInfo(
            bucket=BucketIdentity(
                granularity=granularity,
                date_key=start.date(),
                time_key=start.time(),
            ),
            start=start,
            end=end,
            total_duration=int((end - start).total_seconds() // 60),
        )

    def resolve_all(
        self,
        granularities: Iterable[Granularity],
        timestamp: datetime,
    ) -> dict[Granularity, IntervalInfo]:
        """Resolve *timestamp* for each granularity, preserving order."""
        return {g: self.resolve(g, timestamp) for g in granularities}

    def previous(self, interval: IntervalInfo) -> IntervalInfo:
        """The bucket immediately preceding *interval* in its sequence."""
        return self.resolve(interval.granularity, interval.start - _MINIMAL_STEP)

    def next(self, interval: IntervalInfo) -> IntervalInfo:
        """The bucket immediately following *interval* in its sequence."""
        return self.resolve(interval.granularity, interval.end)

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _floor(granularity: Granularity, ts: datetime) -> datetime:
        ts = ts.replace(second=0, microsecond=0)
        step = _MINUTE_STEPS.get(granularity)
        if step is not None:
            return ts.replace(minute=ts.minute - ts.minute % step)
        if granularity == Granularity.HOUR:
            return ts.replace(minute=0)

        midnight = ts.replace(hour=0, minute=0)
        if granularity == Granularity.DAY:
            return midnight
        if granularity == Granularity.WEEK:
            return midnight - timedelta(days=midnight.weekday())
        if granularity == Granularity.MONTH:
            return midnight.replace(day=1)
        if granularity == Granularity.QUARTER:
            return midnight.replace(month=(ts.month - 1) // 3 * 3 + 1, day=1)
        if granularity == Granularity.YEAR:
            return midnight.replace(month=1, day=1)
        raise ValueError(f"Unknown granularity: {granularity}")

    @staticmethod
    def _advance(granularity: Granularity, start: datetime) -> datetime:
        step = _MINUTE_STEPS.get(granularity)
        if step is not None:
            return start + timedelta(minutes=step)
        if granularity == Granularity.HOUR:
            return start + timedelta(hours=1)
        if granularity == Granularity.DAY:
            return start + timedelta(days=1)
        if granularity == Granularity.WEEK:
            return start + timedelta(weeks=1)
        if granularity == Granularity.MONTH:
            return _add_months(start, 1)
        if granularity == Granularity.QUARTER:
            return _add_months(start, 3)
        if granularity == Granularity.YEAR:
            return start.replace(year=start.year + 1)
        raise ValueError(f"Unknown granularity: {granularity}")
