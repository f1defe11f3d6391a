"""Habit session — subscription lifecycle tied to the signed-in user.

On sign-in:   attach cache → subscribe habits + completions channels →
              initial fetch of both → start the day-rollover task.
On sign-out:  unsubscribe both (exactly once) → cancel in-flight refreshes
              and the rollover task → drop cached state.

Subscriptions change only when the user id changes. Calling set_user()
again with the same id is a no-op.

When the store reports a realtime reconnect, both collections are
re-fetched: events sent while the socket was down never arrive.

This is also the facade the render layer talks to.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from habitsync.cache import HabitCache, Snapshot
from habitsync.events import EventRouter
from habitsync.identity import Identity
from habitsync.models import Frequency, Habit, now_local, start_of_day
from habitsync.recorder import CompletionRecorder
from habitsync.store import RemoteStore, Unsubscribe

log = logging.getLogger(__name__)


class HabitSession:
    def __init__(self, store: RemoteStore,
                 clock: Callable[[], datetime] = now_local,
                 **router_options) -> None:
        self.store = store
        self.clock = clock
        self.cache = HabitCache(store, clock=clock)
        self.recorder = CompletionRecorder(self.cache, clock=clock)
        self.router = EventRouter(
            self.cache,
            habits_channel=store.channel(self.cache.habits_collection),
            completions_channel=store.channel(self.cache.completions_collection),
            **router_options,
        )
        self._user_id: str | None = None
        self._unsubscribers: list[Unsubscribe] = []
        self._rollover_task: asyncio.Task | None = None
        self._sleep = asyncio.sleep
        store.add_reconnect_listener(self._on_reconnect)

    def bind(self, identity: Identity) -> None:
        """Follow an Identity's sign-in / sign-out transitions."""
        identity.add_listener(self.set_user)

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def subscribed(self) -> bool:
        return bool(self._unsubscribers)

    # ═══════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════

    async def set_user(self, user_id: str | None) -> None:
        if user_id == self._user_id:
            return
        await self._teardown()
        self._user_id = user_id
        if not user_id:
            return

        self.cache.attach(user_id)
        for channel in (self.router.habits_channel, self.router.completions_channel):
            self._unsubscribers.append(
                self.store.subscribe(channel, self.router.handler_for(channel))
            )
        log.info("Session started for %s (%d channels)", user_id, len(self._unsubscribers))

        await asyncio.gather(self.cache.refresh_habits(), self.cache.refresh_completions())
        if self._user_id != user_id:
            # signed out or switched while the initial fetch ran
            return
        self._rollover_task = asyncio.get_running_loop().create_task(self._day_rollover())

    async def sign_out(self) -> None:
        await self.set_user(None)

    async def _teardown(self) -> None:
        if self._rollover_task is not None:
            task, self._rollover_task = self._rollover_task, None
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._user_id is None and not self._unsubscribers:
            return
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.router.cancel_pending()
        self.cache.detach()
        self.recorder.reset()
        log.info("Session ended for %s", self._user_id)

    async def _day_rollover(self) -> None:
        """Re-fetch completions at each local midnight."""
        while True:
            now = self.clock()
            target = start_of_day(now) + timedelta(days=1)
            wait_seconds = max((target - now).total_seconds(), 1)
            log.debug("Next completions rollover in %.0f minutes", wait_seconds / 60)
            await self._sleep(wait_seconds)
            await self.cache.refresh_completions()

    def _on_reconnect(self) -> None:
        if self._user_id:
            self.router.resync()

    async def wait_idle(self) -> None:
        """Wait for event-triggered refreshes to settle."""
        await self.router.drain()

    # ═══════════════════════════════════════════════════════════════════
    # Render-layer surface
    # ═══════════════════════════════════════════════════════════════════

    @property
    def snapshot(self) -> Snapshot:
        return self.cache.snapshot

    @property
    def habits(self) -> tuple[Habit, ...]:
        return self.cache.habits

    @property
    def completed_today(self) -> frozenset[str]:
        return self.cache.completed_today

    def is_completed_today(self, habit_id: str) -> bool:
        return self.cache.is_completed_today(habit_id)

    async def complete_habit(self, habit_id: str) -> bool:
        return await self.recorder.complete_habit(habit_id)

    async def delete_habit(self, habit_id: str) -> None:
        await self.recorder.delete_habit(habit_id)

    async def create_habit(self, title: str, description: str = "",
                           frequency: str = Frequency.DAILY.value) -> str | None:
        return await self.recorder.create_habit(title, description, frequency)
