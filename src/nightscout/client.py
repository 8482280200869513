"""Nightscout REST API client.

Endpoints used:
    /api/v1/entries/sgv.json   — Glucose fetch
    /api/v1/entries.json       — Glucose upload
    /api/v1/treatments.json    — Carbs, temp targets, overrides, announcements,
                                 boluses (fetch, upload, delete)
    /api/v1/devicestatus.json  — Device status, statistics, preferences, settings
    /api/v1/profile.json       — Profile upload

Failure policy differs per call.  Background pulls (glucose, carbs, temp
targets, overrides) log a warning and return an empty list so one missing
family does not abort a sync pass.  Announcements, deletes, uploads and the
connection check raise once the retry budget is spent.

Date lower bounds are deliberately asymmetric: glucose and announcement
fetches use ``$gte`` while carbs, temp targets and overrides use ``$gt``.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from typing import Any, Sequence, TypeVar
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel

from src.config import Settings, get_settings
from src.nightscout import query
from src.nightscout.errors import DecodeError, MissingURLError, TransportError
from src.nightscout.models import (
    ANNOUNCEMENT_REMOTE_ENTERED_BY,
    CARBS_MANUAL_ENTERED_BY,
    EXERCISE_LOCAL_ENTERED_BY,
    TREATMENT_LOCAL_ENTERED_BY,
    Announcement,
    BloodGlucose,
    CarbsEntry,
    NightscoutExercise,
    NightscoutPreferences,
    NightscoutProfileStore,
    NightscoutSettings,
    NightscoutStatistics,
    NightscoutStatus,
    NightscoutTreatment,
    TempTarget,
    decode_list,
    encode_payload,
)
from src.nightscout.retry import with_retry
from src.nightscout.transport import NightscoutRequest, NightscoutTransport

logger = logging.getLogger("nightsync.nightscout.client")

ENTRIES_PATH = "/api/v1/entries/sgv.json"
UPLOAD_ENTRIES_PATH = "/api/v1/entries.json"
TREATMENTS_PATH = "/api/v1/treatments.json"
STATUS_PATH = "/api/v1/devicestatus.json"
PROFILE_PATH = "/api/v1/profile.json"

DEFAULT_TIMEOUT_S = 60.0
DEFAULT_RETRY_COUNT = 1
DEFAULT_GLUCOSE_COUNT = 1600

T = TypeVar("T", bound=BaseModel)


def api_secret_digest(secret: str) -> str:
    """Return the lowercase hex SHA-1 of the secret, as Nightscout expects."""
    return hashlib.sha1(secret.encode("utf-8")).hexdigest()


class NightscoutAPI:
    """Authenticated client for one Nightscout site.

    Every call builds its own request and shares no mutable state with
    other calls, so operations may run concurrently.
    """

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retries: int = DEFAULT_RETRY_COUNT,
        retry_backoff_s: float = 0.0,
        glucose_count: int = DEFAULT_GLUCOSE_COUNT,
        app_name: str = "Open-iAPS",
        transport: NightscoutTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            url:             Base address of the Nightscout site.
            secret:          Plain API secret; blank means unauthenticated.
            timeout_s:       Per-request timeout.
            retries:         Extra attempts after a failed first attempt.
            retry_backoff_s: Pause between attempts.
            glucose_count:   Maximum number of entries per glucose fetch.
            app_name:        Name written into the connectivity note.
            transport:       Optional transport (for testing).
            http_client:     Optional httpx client used to build a transport.

        Raises:
            MissingURLError: If ``url`` is not an absolute http(s) address.
        """
        parts = urlsplit((url or "").strip())
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise MissingURLError(f"Not a usable Nightscout URL: {url!r}")

        self.url = f"{parts.scheme}://{parts.netloc}{parts.path.rstrip('/')}"
        self.secret = secret.strip() if secret and secret.strip() else None
        self._timeout_s = timeout_s
        self._retries = retries
        self._retry_backoff_s = retry_backoff_s
        self._glucose_count = glucose_count
        self._app_name = app_name
        self._transport = transport or NightscoutTransport(http_client)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "NightscoutAPI":
        s = settings or get_settings()
        return cls(
            url=s.nightscout_url,
            secret=s.nightscout_secret,
            timeout_s=s.request_timeout_s,
            retries=s.retry_count,
            retry_backoff_s=s.retry_backoff_s,
            glucose_count=s.glucose_fetch_count,
            app_name=s.app_name,
            http_client=http_client,
        )

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    async def check_connection(self) -> None:
        """Verify the site is reachable and, if a secret is set, writable.

        With a secret this posts a short note treatment; without one it
        only reads the treatments collection.

        Raises:
            TransportError: If the site is unreachable or rejects the request.
        """
        if self.secret:
            note = {
                "eventType": "Note",
                "enteredBy": self._app_name,
                "notes": f"{self._app_name} connected",
            }
            request = self._build("POST", TREATMENTS_PATH, body=encode_payload(note))
        else:
            request = self._build("GET", TREATMENTS_PATH)
        await self._run(request, "check connection")
        logger.info("Nightscout reachable at %s", self.url)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch_glucose(self, since: datetime | None = None) -> list[BloodGlucose]:
        """Fetch recent glucose entries, newest first.

        Args:
            since: Inclusive lower bound on ``dateString``.

        Returns:
            Entries with ``glucose`` populated from ``sgv``; empty on failure.
        """
        params: query.QueryParams = [("count", str(self._glucose_count))]
        if since is not None:
            params.append(query.since_inclusive("dateString", since))

        entries = await self._fetch_or_empty(
            self._build("GET", ENTRIES_PATH, params), BloodGlucose, "Glucose"
        )
        return [entry.model_copy(update={"glucose": entry.sgv}) for entry in entries]

    async def fetch_carbs(self, since: datetime | None = None) -> list[CarbsEntry]:
        """Fetch carb treatments entered outside this app.

        Args:
            since: Exclusive lower bound on ``created_at``.
        """
        params = [
            query.exists("carbs"),
            query.not_equal("enteredBy", CARBS_MANUAL_ENTERED_BY),
            query.not_equal("enteredBy", TREATMENT_LOCAL_ENTERED_BY),
        ]
        if since is not None:
            params.append(query.since_exclusive("created_at", since))
        return await self._fetch_or_empty(
            self._build("GET", TREATMENTS_PATH, params), CarbsEntry, "Carbs"
        )

    async def fetch_temp_targets(self, since: datetime | None = None) -> list[TempTarget]:
        """Fetch temporary targets entered outside this app.

        Args:
            since: Exclusive lower bound on ``created_at``.
        """
        params = [
            query.equals("eventType", "Temporary Target"),
            query.not_equal("enteredBy", CARBS_MANUAL_ENTERED_BY),
            query.not_equal("enteredBy", TREATMENT_LOCAL_ENTERED_BY),
            query.exists("duration"),
        ]
        if since is not None:
            params.append(query.since_exclusive("created_at", since))
        return await self._fetch_or_empty(
            self._build("GET", TREATMENTS_PATH, params), TempTarget, "Temp target"
        )

    async def fetch_overrides(self, since: datetime | None = None) -> list[NightscoutExercise]:
        """Fetch overrides this app uploaded earlier (e.g. after a reinstall).

        Unlike the other treatment fetches this selects, rather than
        excludes, the local marker.

        Args:
            since: Exclusive lower bound on ``created_at``.
        """
        params = [
            query.equals("eventType", "Exercice"),
            query.equals("enteredBy", EXERCISE_LOCAL_ENTERED_BY),
        ]
        if since is not None:
            params.append(query.since_exclusive("created_at", since))
        return await self._fetch_or_empty(
            self._build("GET", TREATMENTS_PATH, params), NightscoutExercise, "Override"
        )

    async def fetch_announcements(self, since: datetime | None = None) -> list[Announcement]:
        """Fetch remote-command announcements.

        Failures propagate: an empty list would be indistinguishable from
        "no commands", which is not safe to assume.

        Args:
            since: Inclusive lower bound on ``created_at``.

        Raises:
            TransportError: If the request fails after the retry.
            DecodeError:    If the response is not a list of announcements.
        """
        params = [
            query.equals("eventType", "Announcement"),
            query.equals("enteredBy", ANNOUNCEMENT_REMOTE_ENTERED_BY),
        ]
        if since is not None:
            params.append(query.since_inclusive("created_at", since))
        body = await self._run(self._build("GET", TREATMENTS_PATH, params), "fetch announcements")
        return decode_list(Announcement, body)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_carbs(self, at: datetime) -> None:
        """Delete the carb treatment created exactly at ``at``."""
        await self._delete_treatment(query.exists("carbs"), at, "delete carbs")

    async def delete_insulin(self, at: datetime) -> None:
        """Delete the bolus treatment created exactly at ``at``."""
        await self._delete_treatment(query.exists("bolus"), at, "delete insulin")

    async def delete_override(self, at: datetime) -> None:
        """Delete the override (exercise) treatment created exactly at ``at``."""
        await self._delete_treatment(query.equals("eventType", "Exercice"), at, "delete override")

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_treatments(self, treatments: Sequence[NightscoutTreatment]) -> None:
        await self._upload(TREATMENTS_PATH, treatments, "upload treatments")

    async def upload_glucose(self, glucose: Sequence[BloodGlucose]) -> None:
        await self._upload(UPLOAD_ENTRIES_PATH, glucose, "upload glucose")

    async def upload_stats(self, stats: NightscoutStatistics) -> None:
        await self._upload(STATUS_PATH, stats, "upload stats")

    async def upload_status(self, status: NightscoutStatus) -> None:
        await self._upload(STATUS_PATH, status, "upload status")

    async def upload_prefs(self, prefs: NightscoutPreferences) -> None:
        await self._upload(STATUS_PATH, prefs, "upload prefs")

    async def upload_settings(self, settings: NightscoutSettings) -> None:
        await self._upload(STATUS_PATH, settings, "upload settings")

    async def upload_profile(self, profile: NightscoutProfileStore) -> None:
        await self._upload(PROFILE_PATH, profile, "upload profile")

    async def upload_overrides(self, overrides: Sequence[NightscoutExercise]) -> None:
        """Upload new and updated overrides as exercise treatments."""
        await self._upload(TREATMENTS_PATH, overrides, "upload overrides")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self, has_body: bool = False) -> dict[str, str]:
        headers: dict[str, str] = {}
        if has_body:
            headers["Content-Type"] = "application/json"
        if self.secret:
            headers["api-secret"] = api_secret_digest(self.secret)
        return headers

    def _build(
        self,
        method: str,
        path: str,
        params: query.QueryParams | None = None,
        body: bytes | None = None,
    ) -> NightscoutRequest:
        return NightscoutRequest(
            method=method,
            url=f"{self.url}{path}",
            params=list(params or []),
            headers=self._headers(has_body=body is not None),
            body=body,
            timeout=self._timeout_s,
            allows_constrained_network=False,
        )

    async def _run(self, request: NightscoutRequest, label: str) -> bytes:
        return await with_retry(
            lambda: self._transport.send(request),
            retries=self._retries,
            backoff_s=self._retry_backoff_s,
            label=label,
        )

    async def _fetch_or_empty(
        self, request: NightscoutRequest, model: type[T], family: str
    ) -> list[T]:
        try:
            body = await self._run(request, f"fetch {family.lower()}")
            return decode_list(model, body)
        except (TransportError, DecodeError) as exc:
            logger.warning("%s fetching error: %s", family, exc)
            return []

    async def _delete_treatment(
        self, family_filter: tuple[str, str], at: datetime, label: str
    ) -> None:
        params = [family_filter, query.at("created_at", at)]
        await self._run(self._build("DELETE", TREATMENTS_PATH, params), label)

    async def _upload(
        self, path: str, payload: BaseModel | Sequence[BaseModel] | dict[str, Any], label: str
    ) -> None:
        body = encode_payload(payload)
        await self._run(self._build("POST", path, body=body), label)
