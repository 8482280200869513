"""Incremental pull of remote Nightscout records.

One pull issues the five fetches concurrently, each bounded by the cursor
position of its own family, then advances the cursor to the newest record
actually received.  Records at exactly the cursor position, which the
inclusive glucose and announcement fetches return again, are dropped.
Families whose fetch came back empty keep their old position, so a
swallowed outage simply retries the same window next time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from src.nightscout.client import NightscoutAPI
from src.nightscout.errors import NightscoutError
from src.nightscout.models import (
    Announcement,
    BloodGlucose,
    CarbsEntry,
    NightscoutExercise,
    TempTarget,
)

logger = logging.getLogger("nightsync.nightscout.sync.puller")


@dataclass(frozen=True)
class SyncCursor:
    """Last-seen position per record family.

    Attributes:
        glucose:       Newest glucose entry timestamp.
        carbs:         Newest carb treatment ``created_at``.
        temp_targets:  Newest temp target ``created_at``.
        overrides:     Newest override ``created_at``.
        announcements: Newest announcement ``created_at``.
    """

    glucose: datetime | None = None
    carbs: datetime | None = None
    temp_targets: datetime | None = None
    overrides: datetime | None = None
    announcements: datetime | None = None


@dataclass
class RemoteSnapshot:
    """Everything one pull returned.

    Attributes:
        glucose:       New glucose entries.
        carbs:         New carb treatments.
        temp_targets:  New temporary targets.
        overrides:     Overrides read back from the remote.
        announcements: New remote-command announcements.
        cursor:        Cursor advanced past the records above.
        errors:        Failures of propagating fetches, keyed by family.
        pulled_at:     UTC timestamp of completion.
    """

    glucose: list[BloodGlucose] = field(default_factory=list)
    carbs: list[CarbsEntry] = field(default_factory=list)
    temp_targets: list[TempTarget] = field(default_factory=list)
    overrides: list[NightscoutExercise] = field(default_factory=list)
    announcements: list[Announcement] = field(default_factory=list)
    cursor: SyncCursor = field(default_factory=SyncCursor)
    errors: dict[str, str] = field(default_factory=dict)
    pulled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def record_count(self) -> int:
        return (
            len(self.glucose)
            + len(self.carbs)
            + len(self.temp_targets)
            + len(self.overrides)
            + len(self.announcements)
        )


class RemotePuller:
    """Pull new records from one Nightscout site.

    Usage::

        puller = RemotePuller(NightscoutAPI.from_settings())
        snapshot = await puller.pull(cursor)
        cursor = snapshot.cursor
    """

    def __init__(self, api: NightscoutAPI) -> None:
        self._api = api

    async def pull(self, cursor: SyncCursor | None = None) -> RemoteSnapshot:
        """Fetch every family newer than ``cursor``.

        Announcement failures are recorded on the snapshot instead of
        aborting the other families; the announcement cursor does not move.

        Args:
            cursor: Previous position; None fetches everything available.

        Returns:
            RemoteSnapshot with the new records and the advanced cursor.
        """
        cursor = cursor or SyncCursor()
        glucose, carbs, temp_targets, overrides, announcements = await asyncio.gather(
            self._api.fetch_glucose(cursor.glucose),
            self._api.fetch_carbs(cursor.carbs),
            self._api.fetch_temp_targets(cursor.temp_targets),
            self._api.fetch_overrides(cursor.overrides),
            self._api.fetch_announcements(cursor.announcements),
            return_exceptions=True,
        )

        snapshot = RemoteSnapshot()
        for family, result in (
            ("glucose", glucose),
            ("carbs", carbs),
            ("temp_targets", temp_targets),
            ("overrides", overrides),
            ("announcements", announcements),
        ):
            if isinstance(result, NightscoutError):
                logger.error("Nightscout %s pull failed: %s", family, result)
                snapshot.errors[family] = str(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                setattr(snapshot, family, result)

        # Glucose and announcement fetches are inclusive; drop the boundary record.
        if cursor.glucose is not None:
            snapshot.glucose = [
                g for g in snapshot.glucose if _is_newer(_glucose_time(g), cursor.glucose)
            ]
        if cursor.announcements is not None:
            snapshot.announcements = [
                a
                for a in snapshot.announcements
                if _is_newer(a.created_at, cursor.announcements)
            ]

        snapshot.cursor = replace(
            cursor,
            glucose=_newest(cursor.glucose, [_glucose_time(g) for g in snapshot.glucose]),
            carbs=_newest(cursor.carbs, [c.created_at for c in snapshot.carbs]),
            temp_targets=_newest(cursor.temp_targets, [t.created_at for t in snapshot.temp_targets]),
            overrides=_newest(cursor.overrides, [o.created_at for o in snapshot.overrides]),
            announcements=_newest(
                cursor.announcements, [a.created_at for a in snapshot.announcements]
            ),
        )
        logger.info(
            "Nightscout pull: %d records, %d errors", snapshot.record_count, len(snapshot.errors)
        )
        return snapshot


def _glucose_time(entry: BloodGlucose) -> datetime | None:
    if entry.date_ms is None:
        return None
    seconds, millis = divmod(entry.date_ms, 1000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)


def _is_newer(value: datetime | None, boundary: datetime) -> bool:
    return value is None or _as_utc(value) > _as_utc(boundary)


def _newest(current: datetime | None, candidates: list[datetime | None]) -> datetime | None:
    seen = [_as_utc(c) for c in candidates if c is not None]
    if current is not None:
        seen.append(_as_utc(current))
    return max(seen) if seen else None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
