"""Helpers for reading Stripe webhook payloads.

Stripe sends amounts in minor currency units (cents) and times as unix
timestamps. Everything stored locally is major units and aware datetimes.
"""

from datetime import datetime, timezone
from decimal import Decimal


def to_dict(obj):
    """Return a plain dict for a Stripe object (or a dict as-is)."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def from_timestamp(ts):
    """Unix timestamp -> timezone-aware UTC datetime, or None."""
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def minor_to_major(amount):
    """5000 -> Decimal("50.00"). None counts as zero."""
    return (Decimal(amount or 0) / Decimal(100)).quantize(Decimal("0.01"))
