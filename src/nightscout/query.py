"""Nightscout query-string filter builders.

Nightscout exposes MongoDB-style filters through bracketed query keys, e.g.
``find[created_at][$gt]=2024-03-01T12:00:00.000Z``.  Filters are kept as an
ordered list of ``(key, value)`` pairs because the same key may repeat
(``$ne`` exclusions are ANDed, one parameter each), which a dict cannot
express.
"""

from __future__ import annotations

from datetime import datetime, timezone

QueryParams = list[tuple[str, str]]


def iso8601(value: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with millisecond fraction.

    Naive datetimes are taken to be UTC already.

    >>> iso8601(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))
    '2024-03-01T12:00:00.000Z'
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def equals(field: str, value: str) -> tuple[str, str]:
    return (f"find[{field}]", value)


def exists(field: str) -> tuple[str, str]:
    return (f"find[{field}][$exists]", "true")


def not_equal(field: str, value: str) -> tuple[str, str]:
    return (f"find[{field}][$ne]", value)


def at(field: str, when: datetime) -> tuple[str, str]:
    """Exact timestamp match, used to address a record for deletion."""
    return (f"find[{field}][$eq]", iso8601(when))


def since_inclusive(field: str, when: datetime) -> tuple[str, str]:
    return (f"find[{field}][$gte]", iso8601(when))


def since_exclusive(field: str, when: datetime) -> tuple[str, str]:
    return (f"find[{field}][$gt]", iso8601(when))
