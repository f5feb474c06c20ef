"""
UTC clock helpers for message ordering and graph provenance properties.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_seconds_str(moment: Optional[datetime] = None) -> str:
    """Epoch seconds as a string, the format stored in graph `created_at` properties.

    Args:
        moment: Aware datetime to convert (defaults to now)
    """
    return str(int((moment or utc_now()).timestamp()))
