"""The closed set of aggregator variants.

Each variant is an IntervalAggregator configured with its own name, the
event types it accepts, and a store of its own.  Adding a variant means
adding a factory here and registering it in main.py.
"""

from __future__ import annotations

import logging

from activity_rollup.core.aggregator import IntervalAggregator
from activity_rollup.core.interval_resolver import IntervalResolver
from activity_rollup.domain.enums import EventType
from activity_rollup.store.base import AggregationStore

LOGIN = "login"
ACTIVITY = "activity"


def login_aggregator(
    store: AggregationStore,
    resolver: IntervalResolver,
    max_attempts: int = 3,
    log: logging.Logger | None = None,
) -> IntervalAggregator:
    """Counts logins: how long into each bucket users kept logging in, and who."""
    return IntervalAggregator(
        name=LOGIN,
        event_types=(EventType.LOGIN,),
        store=store,
        resolver=resolver,
        max_attempts=max_attempts,
        log=log,
    )


def activity_aggregator(
    store: AggregationStore,
    resolver: IntervalResolver,
    max_attempts: int = 3,
    log: logging.Logger | None = None,
) -> IntervalAggregator:
    """Counts interactive use: page views and actions."""
    return IntervalAggregator(
        name=ACTIVITY,
        event_types=(EventType.PAGE_VIEW, EventType.ACTION),
        store=store,
        resolver=resolver,
        max_attempts=max_attempts,
        log=log,
    )
