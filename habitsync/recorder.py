"""Completion recorder — the write path for habits and completions.

complete_habit() runs a two-write protocol:
  1. create the Completion (completed_at = now)
  2. look the habit up in the cache (absent → stop, no error)
  3. update the Habit: streak_count + 1, last_completed = the same now

Duplicate protection, weakest to strongest:
  - the cached CompletedToday set
  - an in-process claim on (habit, local day), held while the writes run
  - a deterministic completion id per (habit, local day), so the store
    rejects a second completion from any client (COMPLETION_KEY_PER_DAY)

No write here touches the cache. Results show up through realtime events
and the refreshes they trigger.
"""

import logging
from datetime import datetime
from typing import Callable

from habitsync.cache import HabitCache
from habitsync.config import COMPLETION_KEY_PER_DAY
from habitsync.models import Frequency, completion_key, format_timestamp, now_local
from habitsync.store import DocumentConflictError, DocumentNotFoundError

log = logging.getLogger(__name__)


class CompletionRecorder:
    def __init__(self, cache: HabitCache,
                 clock: Callable[[], datetime] = now_local,
                 key_per_day: bool = COMPLETION_KEY_PER_DAY) -> None:
        self.cache = cache
        self.store = cache.store
        self.clock = clock
        self.key_per_day = key_per_day
        self._claims: set[str] = set()

    def reset(self) -> None:
        """Forget in-flight claims (called on session teardown)."""
        self._claims.clear()

    # ═══════════════════════════════════════════════════════════════════
    # Complete
    # ═══════════════════════════════════════════════════════════════════

    async def complete_habit(self, habit_id: str) -> bool:
        """Record a completion for today. Returns True if it was written."""
        user_id = self.cache.user_id
        if not user_id:
            return False
        if self.cache.is_completed_today(habit_id):
            log.info("Habit %s already completed today, skipping", habit_id)
            return False

        now = self.clock()
        claim = completion_key(habit_id, now)
        if claim in self._claims:
            log.info("Habit %s completion already in flight, skipping", habit_id)
            return False
        self._claims.add(claim)
        try:
            return await self._record(habit_id, user_id, now,
                                      claim if self.key_per_day else None)
        finally:
            self._claims.discard(claim)

    async def _record(self, habit_id: str, user_id: str, now: datetime,
                      document_id: str | None) -> bool:
        timestamp = format_timestamp(now)

        # Step 1: completion record
        try:
            await self.store.create_document(
                self.cache.completions_collection,
                document_id,
                {"habit_id": habit_id, "user_id": user_id, "completed_at": timestamp},
            )
        except DocumentConflictError:
            # Recorded elsewhere today; that writer owns the streak update
            log.info("Habit %s was already completed today on another client", habit_id)
            return False
        except Exception as e:
            log.error("Failed to record completion for habit %s: %s", habit_id, e)
            return False

        # Step 2: owning habit
        habit = self.cache.get_habit(habit_id)
        if habit is None:
            log.info("Habit %s not in cache, completion recorded without streak update",
                     habit_id)
            return True

        # Step 3: streak
        try:
            await self.store.update_document(
                self.cache.habits_collection,
                habit_id,
                {"streak_count": habit.streak_count + 1, "last_completed": timestamp},
            )
        except Exception as e:
            log.error(
                "Completion for habit %s recorded but streak update failed: %s",
                habit_id, e,
            )
            return True
        log.info("Habit %s completed, streak %d", habit_id, habit.streak_count + 1)
        return True

    # ═══════════════════════════════════════════════════════════════════
    # Create / delete
    # ═══════════════════════════════════════════════════════════════════

    async def create_habit(self, title: str, description: str = "",
                           frequency: str = Frequency.DAILY.value) -> str | None:
        """Create a habit for the current user. Returns the new id.

        Raises ValueError on an empty title or unknown frequency.
        Returns None when signed out or when the store write fails.
        """
        title = title.strip()
        if not title:
            raise ValueError("Habit title must not be empty")
        freq = Frequency.parse(frequency)

        user_id = self.cache.user_id
        if not user_id:
            return None
        try:
            doc = await self.store.create_document(
                self.cache.habits_collection,
                None,
                {
                    "user_id": user_id,
                    "title": title,
                    "description": description.strip(),
                    "frequency": freq.value,
                    "streak_count": 0,
                    "last_completed": None,
                    "created_at": format_timestamp(self.clock()),
                },
            )
        except Exception as e:
            log.error("Failed to create habit %r: %s", title, e)
            return None
        log.info("Created habit %s (%s)", doc["$id"], title)
        return doc["$id"]

    async def delete_habit(self, habit_id: str) -> None:
        """Delete a habit. The cache catches up via the delete event.

        Completion records of the habit are left in place.
        """
        if not self.cache.user_id:
            return
        try:
            await self.store.delete_document(self.cache.habits_collection, habit_id)
        except DocumentNotFoundError:
            log.info("Habit %s already deleted", habit_id)
        except Exception as e:
            log.error("Failed to delete habit %s: %s", habit_id, e)
        else:
            log.info("Deleted habit %s", habit_id)
