"""Utility functions for the tokengate backend."""

from tokengate.utils.dates import add_months, days_until, ensure_utc, utcnow

__all__ = [
    "add_months",
    "days_until",
    "ensure_utc",
    "utcnow",
]
