"""Habit cache — the local snapshot of one user's habits and today's completions.

Mutated only by refresh_habits() / refresh_completions(), and always by
full replacement. Readers get immutable snapshots.

Ordering:
  - Each refresh takes an issue number before it suspends on the store.
  - A result is applied only if no later-issued refresh of the same kind
    has already been applied (last-issued-wins).
  - attach()/detach() bump a generation; results from an older generation
    are dropped, so a fetch that resolves after logout changes nothing.

Errors: a failed fetch logs a warning and leaves the snapshot untouched.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable

from habitsync.config import COMPLETIONS_COLLECTION_ID, HABITS_COLLECTION_ID
from habitsync.derive import completed_today_ids, find_streak_drift, is_completed_today
from habitsync.models import Completion, Habit, format_timestamp, now_local, start_of_day
from habitsync.store import Query, RemoteStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    habits: tuple[Habit, ...] = ()
    completions: tuple[Completion, ...] = ()
    completed_today: frozenset[str] = frozenset()
    day_start: datetime | None = None
    drifted: frozenset[str] = field(default_factory=frozenset)


class HabitCache:
    """Session-scoped cache. One instance per HabitSession."""

    def __init__(self, store: RemoteStore,
                 clock: Callable[[], datetime] = now_local,
                 habits_collection: str = HABITS_COLLECTION_ID,
                 completions_collection: str = COMPLETIONS_COLLECTION_ID) -> None:
        self.store = store
        self.clock = clock
        self.habits_collection = habits_collection
        self.completions_collection = completions_collection
        self._user_id: str | None = None
        self._snapshot = Snapshot()
        self._generation = 0
        # issue counters / last applied issue number, per refresh kind
        self._issued = {"habits": 0, "completions": 0}
        self._applied = {"habits": 0, "completions": 0}

    # ── Session binding ───────────────────────────────────────────────

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def attach(self, user_id: str) -> None:
        """Bind to a user with an empty snapshot."""
        self._generation += 1
        self._user_id = user_id
        self._snapshot = Snapshot()

    def detach(self) -> None:
        """Drop the user and everything cached for them."""
        self._generation += 1
        self._user_id = None
        self._snapshot = Snapshot()

    # ── Read accessors ────────────────────────────────────────────────

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def habits(self) -> tuple[Habit, ...]:
        return self._snapshot.habits

    @property
    def completed_today(self) -> frozenset[str]:
        """Habits completed today. Empty until a refresh covers today."""
        snap = self._snapshot
        if snap.day_start != start_of_day(self.clock()):
            return frozenset()
        return snap.completed_today

    @property
    def drifted(self) -> frozenset[str]:
        return self._snapshot.drifted

    def get_habit(self, habit_id: str) -> Habit | None:
        for habit in self._snapshot.habits:
            if habit.id == habit_id:
                return habit
        return None

    def is_completed_today(self, habit_id: str) -> bool:
        return is_completed_today(self.completed_today, habit_id)

    # ── Refresh ───────────────────────────────────────────────────────

    def _begin(self, kind: str) -> tuple[int, int]:
        self._issued[kind] += 1
        return self._generation, self._issued[kind]

    def _accept(self, kind: str, generation: int, issue: int) -> bool:
        if generation != self._generation:
            log.debug("Dropping %s fetch from a previous session", kind)
            return False
        if issue < self._applied[kind]:
            log.debug("Dropping out-of-order %s fetch #%d (have #%d)",
                      kind, issue, self._applied[kind])
            return False
        self._applied[kind] = issue
        return True

    async def refresh_habits(self) -> None:
        """Re-fetch all habits owned by the current user."""
        user_id = self._user_id
        if not user_id:
            return
        generation, issue = self._begin("habits")
        try:
            docs = await self.store.list_documents(
                self.habits_collection, [Query.equal("user_id", user_id)]
            )
            habits = tuple(Habit.from_document(d) for d in docs)
        except Exception as e:
            log.warning("Habit refresh failed, keeping %d cached: %s",
                        len(self._snapshot.habits), e)
            return
        if not self._accept("habits", generation, issue):
            return

        previous_drift = self._snapshot.drifted
        self._replace(habits=habits)
        new_drift = self._snapshot.drifted - previous_drift
        if new_drift:
            log.warning("Streak not advanced for completed habit(s): %s",
                        ", ".join(sorted(new_drift)))

    async def refresh_completions(self) -> None:
        """Re-fetch the current user's completions since local midnight."""
        user_id = self._user_id
        if not user_id:
            return
        generation, issue = self._begin("completions")
        day_start = start_of_day(self.clock())
        try:
            docs = await self.store.list_documents(
                self.completions_collection,
                [
                    Query.equal("user_id", user_id),
                    Query.greater_than_equal("completed_at", format_timestamp(day_start)),
                ],
            )
            completions = tuple(Completion.from_document(d) for d in docs)
        except Exception as e:
            log.warning("Completion refresh failed, keeping cached set: %s", e)
            return
        if not self._accept("completions", generation, issue):
            return

        self._replace(
            completions=completions,
            completed_today=completed_today_ids(completions, day_start),
            day_start=day_start,
        )

    def _replace(self, **changes) -> None:
        snap = replace(self._snapshot, **changes)
        day_start = snap.day_start or start_of_day(self.clock())
        self._snapshot = replace(
            snap, drifted=find_streak_drift(snap.habits, snap.completed_today, day_start)
        )
