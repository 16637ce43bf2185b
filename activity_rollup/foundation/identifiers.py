"""Identifiers for events, processing sessions and aggregate records.

Events and sessions get random ids.  Aggregate records get ids derived
from their (bucket, group) key, so the same record has the same id in
every store that holds it and exports of one bucket can be matched up
without a lookup.
"""

from __future__ import annotations

from uuid import UUID, uuid4, uuid5

# Fixed namespace for record ids; changing it renames every record.
_RECORD_NAMESPACE = UUID("6f1c3a52-9b0e-4d87-a2f4-3e5d7c1b8a90")


def new_id() -> UUID:
    """Random UUID v4 for events and processing sessions."""
    return uuid4()


def record_id(bucket_key: str, group: str) -> UUID:
    """Stable UUID v5 for the record of *group* in the bucket named *bucket_key*."""
    return uuid5(_RECORD_NAMESPACE, f"{bucket_key}/{group}")
