"""Tests for the concurrent incremental pull."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.nightscout.client import NightscoutAPI
from src.nightscout.sync.puller import RemotePuller, SyncCursor
from src.nightscout.tests.conftest import (
    ONE_MS,
    TEST_TIME,
    FakeNightscout,
    announcement_record,
    carbs_record,
    glucose_record,
    override_record,
    temp_target_record,
)


@pytest.fixture
def populated(fake_ns: FakeNightscout) -> FakeNightscout:
    fake_ns.entries = [glucose_record(TEST_TIME), glucose_record(TEST_TIME + ONE_MS * 5)]
    fake_ns.treatments = [
        carbs_record(TEST_TIME + ONE_MS),
        carbs_record(TEST_TIME + ONE_MS * 9),
        temp_target_record(TEST_TIME + ONE_MS * 2),
        override_record(TEST_TIME + ONE_MS * 3),
        announcement_record(TEST_TIME + ONE_MS * 4),
    ]
    return fake_ns


class TestRemotePuller:
    @pytest.mark.asyncio
    async def test_first_pull_fetches_everything(
        self, api: NightscoutAPI, populated: FakeNightscout
    ) -> None:
        snapshot = await RemotePuller(api).pull()
        assert len(snapshot.glucose) == 2
        assert len(snapshot.carbs) == 2
        assert len(snapshot.temp_targets) == 1
        assert len(snapshot.overrides) == 1
        assert len(snapshot.announcements) == 1
        assert snapshot.record_count == 7
        assert snapshot.errors == {}

    @pytest.mark.asyncio
    async def test_cursor_advances_to_newest(
        self, api: NightscoutAPI, populated: FakeNightscout
    ) -> None:
        cursor = (await RemotePuller(api).pull()).cursor
        assert cursor.carbs == TEST_TIME + ONE_MS * 9
        assert cursor.temp_targets == TEST_TIME + ONE_MS * 2
        assert cursor.overrides == TEST_TIME + ONE_MS * 3
        assert cursor.announcements == TEST_TIME + ONE_MS * 4
        assert cursor.glucose == TEST_TIME + ONE_MS * 5

    @pytest.mark.asyncio
    async def test_second_pull_returns_nothing_new(
        self, api: NightscoutAPI, populated: FakeNightscout
    ) -> None:
        puller = RemotePuller(api)
        cursor = (await puller.pull()).cursor
        again = await puller.pull(cursor)
        assert again.carbs == []
        assert again.temp_targets == []
        assert again.overrides == []
        assert again.glucose == []
        assert again.announcements == []
        assert again.record_count == 0
        assert again.cursor == cursor

    @pytest.mark.asyncio
    async def test_boundary_dropped_newer_kept(
        self, api: NightscoutAPI, populated: FakeNightscout
    ) -> None:
        puller = RemotePuller(api)
        cursor = (await puller.pull()).cursor
        populated.entries.append(glucose_record(TEST_TIME + ONE_MS * 6))
        populated.treatments.append(announcement_record(TEST_TIME + ONE_MS * 7))
        again = await puller.pull(cursor)
        assert len(again.glucose) == 1
        assert len(again.announcements) == 1
        assert again.cursor.glucose == TEST_TIME + ONE_MS * 6
        assert again.cursor.announcements == TEST_TIME + ONE_MS * 7

    @pytest.mark.asyncio
    async def test_announcement_failure_recorded_not_raised(
        self, api: NightscoutAPI, fake_ns: FakeNightscout
    ) -> None:
        fake_ns.fail_with = [500] * 10
        previous = SyncCursor(announcements=datetime(2024, 1, 1, tzinfo=timezone.utc))
        snapshot = await RemotePuller(api).pull(previous)
        assert snapshot.record_count == 0
        assert set(snapshot.errors) == {"announcements"}
        assert snapshot.cursor == previous
