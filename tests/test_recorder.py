"""Tests for the completion / create / delete write path."""

import asyncio
from datetime import datetime

import pytest

from habitsync.cache import HabitCache
from habitsync.models import TZ, format_timestamp, parse_timestamp
from habitsync.recorder import CompletionRecorder
from habitsync.store import Query, StoreError
from habitsync.store.sqlite import SQLiteStore

NOW = datetime(2026, 3, 10, 9, 30, tzinfo=TZ)


def _clock():
    return NOW


class _FlakyStore(SQLiteStore):
    """SQLite store whose reads or writes can be made to fail or to yield."""

    fail_create = False
    fail_update = False
    fail_list = False
    slow_create = False

    async def list_documents(self, collection_id, queries=None):
        if self.fail_list:
            raise StoreError("list refused")
        return await super().list_documents(collection_id, queries)

    async def create_document(self, collection_id, document_id, data):
        if self.fail_create:
            raise StoreError("create refused")
        if self.slow_create:
            await asyncio.sleep(0)
        return await super().create_document(collection_id, document_id, data)

    async def update_document(self, collection_id, document_id, data):
        if self.fail_update:
            raise StoreError("update refused")
        return await super().update_document(collection_id, document_id, data)


@pytest.fixture
def store(tmp_path):
    return _FlakyStore(tmp_path / "test.db", database_id="db")


def _setup(store, key_per_day=True, clock=_clock):
    cache = HabitCache(store, clock=clock)
    cache.attach("u1")
    return cache, CompletionRecorder(cache, clock=clock, key_per_day=key_per_day)


async def _new_habit(store, streak=0):
    doc = await store.create_document("habits", None, {
        "user_id": "u1", "title": "Read", "description": "", "frequency": "daily",
        "streak_count": streak, "last_completed": None,
    })
    return doc["$id"]


async def _completions(store):
    return await store.list_documents("habit_completions")


async def _habit(store, habit_id):
    (doc,) = await store.list_documents("habits", [Query.equal("$id", habit_id)])
    return doc


class TestCompleteHabit:
    def test_writes_completion_and_advances_streak(self, store):
        cache, recorder = _setup(store)

        async def go():
            hid = await _new_habit(store, streak=4)
            await cache.refresh_habits()
            written = await recorder.complete_habit(hid)
            return written, hid, await _completions(store), await _habit(store, hid)

        written, hid, completions, habit = asyncio.run(go())
        assert written is True
        assert len(completions) == 1
        completion = completions[0]
        assert completion["$id"] == f"{hid}_20260310"
        assert completion["habit_id"] == hid
        assert completion["user_id"] == "u1"
        assert habit["streak_count"] == 5
        assert habit["last_completed"] == completion["completed_at"]
        assert parse_timestamp(habit["last_completed"]) == NOW

    def test_rejected_when_already_in_completed_set(self, store):
        cache, recorder = _setup(store)

        async def go():
            hid = await _new_habit(store)
            await store.create_document("habit_completions", None, {
                "habit_id": hid, "user_id": "u1", "completed_at": format_timestamp(NOW),
            })
            await cache.refresh_habits()
            await cache.refresh_completions()
            written = await recorder.complete_habit(hid)
            return written, await _completions(store), await _habit(store, hid)

        written, completions, habit = asyncio.run(go())
        assert written is False
        assert len(completions) == 1
        assert habit["streak_count"] == 0

    def test_rapid_double_call_writes_once(self, store):
        """A second call while the first is still writing is skipped."""
        cache, recorder = _setup(store, key_per_day=False)
        store.slow_create = True

        async def go():
            hid = await _new_habit(store)
            await cache.refresh_habits()
            results = await asyncio.gather(
                recorder.complete_habit(hid), recorder.complete_habit(hid)
            )
            return results, await _completions(store), await _habit(store, hid)

        results, completions, habit = asyncio.run(go())
        assert results == [True, False]
        assert len(completions) == 1
        assert habit["streak_count"] == 1

    def test_repeat_before_refresh_rejected_by_day_key(self, store):
        cache, recorder = _setup(store)

        async def go():
            hid = await _new_habit(store)
            await cache.refresh_habits()
            first = await recorder.complete_habit(hid)
            second = await recorder.complete_habit(hid)  # no completions refresh yet
            return first, second, await _completions(store), await _habit(store, hid)

        first, second, completions, habit = asyncio.run(go())
        assert (first, second) == (True, False)
        assert len(completions) == 1
        assert habit["streak_count"] == 1

    def test_claim_released_after_write(self, store):
        cache, recorder = _setup(store)

        async def go():
            hid = await _new_habit(store)
            await cache.refresh_habits()
            await recorder.complete_habit(hid)
            return recorder._claims

        assert asyncio.run(go()) == set()

    def test_other_client_already_completed(self, store):
        """Per-day key collides with another client's completion: no streak bump."""
        cache, recorder = _setup(store)
        _, other = _setup(store)

        async def go():
            hid = await _new_habit(store)
            await cache.refresh_habits()
            await other.complete_habit(hid)  # other's cache has no habits: no streak update
            await recorder.complete_habit(hid)
            return await _completions(store), await _habit(store, hid)

        completions, habit = asyncio.run(go())
        assert len(completions) == 1
        assert habit["streak_count"] == 0

    def test_missing_habit_writes_completion_only(self, store):
        cache, recorder = _setup(store)

        async def go():
            await recorder.complete_habit("ghost")
            return await _completions(store), await store.list_documents("habits")

        completions, habits = asyncio.run(go())
        assert [c["habit_id"] for c in completions] == ["ghost"]
        assert habits == []

    def test_create_failure_skips_streak_and_allows_retry(self, store):
        cache, recorder = _setup(store)

        async def go():
            hid = await _new_habit(store)
            await cache.refresh_habits()
            store.fail_create = True
            failed = await recorder.complete_habit(hid)
            after_failure = (await _habit(store, hid))["streak_count"]
            store.fail_create = False
            await recorder.complete_habit(hid)
            return failed, after_failure, await _completions(store), await _habit(store, hid)

        failed, after_failure, completions, habit = asyncio.run(go())
        assert failed is False
        assert after_failure == 0
        assert len(completions) == 1
        assert habit["streak_count"] == 1

    def test_update_failure_leaves_completion(self, store):
        cache, recorder = _setup(store)

        async def go():
            hid = await _new_habit(store)
            await cache.refresh_habits()
            store.fail_update = True
            await recorder.complete_habit(hid)
            await cache.refresh_completions()
            await cache.refresh_habits()
            return hid, await _completions(store), await _habit(store, hid)

        hid, completions, habit = asyncio.run(go())
        assert len(completions) == 1
        assert habit["streak_count"] == 0
        assert cache.drifted == frozenset({hid})

    def test_signed_out_is_noop(self, store):
        cache, recorder = _setup(store)
        cache.detach()
        assert asyncio.run(recorder.complete_habit("h1")) is False
        assert asyncio.run(_completions(store)) == []

    def test_yesterdays_set_ignored_after_midnight(self, store):
        """After midnight a stale completed set must not block today's completion."""
        now = [datetime(2026, 3, 10, 23, 50, tzinfo=TZ)]
        cache, recorder = _setup(store, clock=lambda: now[0])

        async def go():
            hid = await _new_habit(store)
            await cache.refresh_habits()
            await recorder.complete_habit(hid)
            await cache.refresh_completions()
            assert cache.is_completed_today(hid)

            now[0] = datetime(2026, 3, 11, 0, 10, tzinfo=TZ)
            store.fail_list = True
            await cache.refresh_completions()  # fails: snapshot still holds the 10th
            store.fail_list = False
            stale = cache.is_completed_today(hid)
            await cache.refresh_habits()
            written = await recorder.complete_habit(hid)
            return stale, written, await _completions(store)

        stale, written, completions = asyncio.run(go())
        assert stale is False
        assert written is True
        assert sorted(c["$id"][-8:] for c in completions) == ["20260310", "20260311"]


class TestCreateHabit:
    def test_creates_with_zero_streak(self, store):
        cache, recorder = _setup(store)

        async def go():
            hid = await recorder.create_habit("  Read ", "20 pages", "Daily")
            return hid, await _habit(store, hid)

        hid, doc = asyncio.run(go())
        assert doc["title"] == "Read"
        assert doc["frequency"] == "daily"
        assert doc["streak_count"] == 0
        assert doc["last_completed"] is None
        assert doc["user_id"] == "u1"

    def test_rejects_bad_input(self, store):
        cache, recorder = _setup(store)
        with pytest.raises(ValueError):
            asyncio.run(recorder.create_habit("   "))
        with pytest.raises(ValueError):
            asyncio.run(recorder.create_habit("Read", frequency="hourly"))

    def test_store_failure_returns_none(self, store):
        cache, recorder = _setup(store)
        store.fail_create = True
        assert asyncio.run(recorder.create_habit("Read")) is None


class TestDeleteHabit:
    def test_delete_keeps_completions(self, store):
        cache, recorder = _setup(store)

        async def go():
            hid = await _new_habit(store)
            await cache.refresh_habits()
            await recorder.complete_habit(hid)
            await recorder.delete_habit(hid)
            # cache only changes on refresh
            cached = [h.id for h in cache.habits]
            await cache.refresh_habits()
            return hid, cached, await _completions(store)

        hid, cached, completions = asyncio.run(go())
        assert cached == [hid]
        assert cache.habits == ()
        assert [c["habit_id"] for c in completions] == [hid]

    def test_delete_missing_is_quiet(self, store):
        cache, recorder = _setup(store)
        asyncio.run(recorder.delete_habit("nope"))
