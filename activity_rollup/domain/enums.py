"""Controlled enumerations for the activity-rollup domain.

Every categorical field in the domain MUST reference an enum defined here.
Free-form strings are not acceptable for classification fields.
"""

from __future__ import annotations

from enum import Enum


class Granularity(str, Enum):
    """Interval types tracked by the aggregators.

    Each granularity has its own independent bucket sequence.
    """

    MINUTE = "minute"
    FIVE_MINUTE = "five_minute"
    TEN_MINUTE = "ten_minute"
    FIFTEEN_MINUTE = "fifteen_minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class EventType(str, Enum):
    """Raw activity event types the dispatch layer understands."""

    LOGIN = "login"
    LOGOUT = "logout"
    PAGE_VIEW = "page_view"
    ACTION = "action"
