"""Shared fixtures and an in-memory Nightscout fake for sync client tests."""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.nightscout.client import NightscoutAPI
from src.nightscout.query import iso8601

TEST_URL = "https://ns.example.com"
TEST_SECRET = "abc"
TEST_TIME = datetime(2024, 3, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)

_FILTER_KEY = re.compile(r"find\[(\w+)\](?:\[\$(\w+)\])?")


def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class FakeNightscout:
    """Minimal Nightscout server that honours the filters the client sends.

    Attributes:
        entries:    Stored glucose entries (dicts, wire shape).
        treatments: Stored treatments (dicts, wire shape).
        requests:   Every request received, in order.
        fail_with:  Status codes to answer with, one per request, before
                    serving normally.
    """

    def __init__(self) -> None:
        self.entries: list[dict] = []
        self.treatments: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.fail_with: list[int] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with.pop(0), json={"status": "error"})

        store = self.entries if "/entries" in request.url.path else self.treatments
        params = request.url.params

        if request.method == "GET":
            found = [r for r in store if self._matches(r, params)]
            if "count" in params:
                found = found[: int(params["count"])]
            return httpx.Response(200, json=found)

        if request.method == "POST":
            payload = json.loads(request.content)
            store.extend(payload if isinstance(payload, list) else [payload])
            return httpx.Response(200, json=payload)

        if request.method == "DELETE":
            kept = [r for r in store if not self._matches(r, params)]
            deleted = len(store) - len(kept)
            store[:] = kept
            return httpx.Response(200, json={"n": deleted})

        return httpx.Response(405)

    @staticmethod
    def _matches(record: dict, params: httpx.QueryParams) -> bool:
        for key, value in params.multi_items():
            match = _FILTER_KEY.fullmatch(key)
            if not match:
                continue
            field, op = match.groups()
            actual = record.get(field)
            if op is None and actual != value:
                return False
            if op == "ne" and actual == value:
                return False
            if op == "exists" and (field in record) != (value == "true"):
                return False
            if op in ("gt", "gte", "eq"):
                if actual is None:
                    return False
                left, right = _ts(actual), _ts(value)
                if op == "gt" and not left > right:
                    return False
                if op == "gte" and not left >= right:
                    return False
                if op == "eq" and left != right:
                    return False
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_ns() -> FakeNightscout:
    return FakeNightscout()


@pytest.fixture
def http_client(fake_ns: FakeNightscout) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_ns.handler))


@pytest.fixture
def api(http_client: httpx.AsyncClient) -> NightscoutAPI:
    """Authenticated client wired to the fake server."""
    return NightscoutAPI(TEST_URL, secret=TEST_SECRET, http_client=http_client)


@pytest.fixture
def anonymous_api(http_client: httpx.AsyncClient) -> NightscoutAPI:
    """Client without a secret, wired to the fake server."""
    return NightscoutAPI(TEST_URL, http_client=http_client)


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def carbs_record(created_at: datetime, carbs: float = 20, entered_by: str = "Nightscout") -> dict:
    return {
        "_id": f"carbs-{created_at.timestamp()}",
        "created_at": iso8601(created_at),
        "carbs": carbs,
        "enteredBy": entered_by,
    }


def temp_target_record(created_at: datetime, entered_by: str = "Nightscout") -> dict:
    return {
        "_id": f"tt-{created_at.timestamp()}",
        "eventType": "Temporary Target",
        "created_at": iso8601(created_at),
        "targetTop": 140,
        "targetBottom": 120,
        "duration": 60,
        "enteredBy": entered_by,
    }


def override_record(created_at: datetime, entered_by: str = "Open-iAPS") -> dict:
    return {
        "eventType": "Exercice",
        "created_at": iso8601(created_at),
        "duration": 45,
        "enteredBy": entered_by,
        "notes": "Running",
    }


def announcement_record(created_at: datetime, notes: str = "bolus:1.5") -> dict:
    return {
        "_id": f"ann-{created_at.timestamp()}",
        "eventType": "Announcement",
        "created_at": iso8601(created_at),
        "enteredBy": "remote",
        "notes": notes,
    }


def glucose_record(at: datetime, sgv: int = 120) -> dict:
    return {
        "_id": f"sgv-{at.timestamp()}",
        "sgv": sgv,
        "direction": "Flat",
        "date": int(at.timestamp()) * 1000 + at.microsecond // 1000,
        "dateString": iso8601(at),
        "type": "sgv",
    }


ONE_MS = timedelta(milliseconds=1)
