"""Tests for event classification and refresh routing."""

import asyncio

from habitsync.events import ChangeKind, EventRouter, RefreshAction, classify_events
from habitsync.store import RealtimeEvent

HABITS = "databases.db.collections.habits.documents"
COMPLETIONS = "databases.db.collections.habit_completions.documents"


def _event(kind: str) -> list[str]:
    return [
        f"databases.db.collections.habits.documents.abc.{kind}",
        f"databases.*.collections.*.documents.*.{kind}",
        "databases.*.collections.*.documents.*",
    ]


class _CountingCache:
    """Stands in for HabitCache; counts refresh calls."""

    def __init__(self):
        self.habits = 0
        self.completions = 0

    async def refresh_habits(self):
        self.habits += 1

    async def refresh_completions(self):
        self.completions += 1


class TestClassify:
    def test_kinds(self):
        assert classify_events(_event("create")) == {ChangeKind.CREATE}
        assert classify_events(_event("update")) == {ChangeKind.UPDATE}
        assert classify_events(_event("delete")) == {ChangeKind.DELETE}

    def test_wildcard_only(self):
        assert classify_events(["databases.*.collections.*.documents.*.delete"]) == {ChangeKind.DELETE}

    def test_unrelated(self):
        assert classify_events(["users.u1.sessions.s1.create", "databases.*"]) == set()
        assert classify_events([]) == set()


class TestPolicy:
    def _router(self, kinds=("create", "update", "delete")):
        return EventRouter(_CountingCache(), HABITS, COMPLETIONS, completion_kinds=kinds)

    def test_habit_channel_any_kind(self):
        router = self._router()
        for kind in ("create", "update", "delete"):
            assert router.on_remote_event(HABITS, _event(kind)) is RefreshAction.HABITS

    def test_completion_channel_extended(self):
        router = self._router()
        for kind in ("create", "update", "delete"):
            assert router.on_remote_event(COMPLETIONS, _event(kind)) is RefreshAction.COMPLETIONS

    def test_completion_channel_create_only(self):
        router = self._router(kinds=("create",))
        assert router.on_remote_event(COMPLETIONS, _event("create")) is RefreshAction.COMPLETIONS
        assert router.on_remote_event(COMPLETIONS, _event("update")) is RefreshAction.NONE
        assert router.on_remote_event(COMPLETIONS, _event("delete")) is RefreshAction.NONE

    def test_unknown_channel(self):
        router = self._router()
        assert router.on_remote_event("databases.db.collections.x.documents", _event("create")) \
            is RefreshAction.NONE

    def test_unclassified_event(self):
        router = self._router()
        assert router.on_remote_event(HABITS, ["something.else"]) is RefreshAction.NONE


class TestDispatch:
    def test_handler_schedules_refresh_without_blocking(self):
        cache = _CountingCache()
        router = EventRouter(cache, HABITS, COMPLETIONS)

        async def go():
            router.handler_for(HABITS)(RealtimeEvent(events=_event("update")))
            router.handler_for(COMPLETIONS)(RealtimeEvent(events=_event("create")))
            # scheduled, not yet run
            assert (cache.habits, cache.completions) == (0, 0)
            assert router.pending == 2
            await router.drain()

        asyncio.run(go())
        assert (cache.habits, cache.completions) == (1, 1)

    def test_cancel_pending(self):
        cache = _CountingCache()
        router = EventRouter(cache, HABITS, COMPLETIONS)

        async def go():
            router.dispatch(HABITS, RealtimeEvent(events=_event("create")))
            router.cancel_pending()
            await asyncio.sleep(0)

        asyncio.run(go())
        assert cache.habits == 0
        assert router.pending == 0
