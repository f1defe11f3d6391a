"""Event router — turns realtime notifications into cache refreshes.

Events are treated as signals only: the payload is ignored and the
affected collection is re-fetched in full. The router never filters by
owner; the re-fetch itself is scoped to the current user.

Policy (per channel):
  habits channel       create / update / delete  → refresh habits
  completions channel  kinds in COMPLETION_REFRESH_KINDS → refresh completions

Refreshes run as background tasks so event delivery never waits on I/O.
"""

import asyncio
import logging
import re
from collections.abc import Iterable
from enum import Enum

from habitsync.cache import HabitCache
from habitsync.config import COMPLETION_REFRESH_KINDS
from habitsync.store import RealtimeEvent

log = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class RefreshAction(str, Enum):
    NONE = "none"
    HABITS = "habits"
    COMPLETIONS = "completions"


# databases.<db>.collections.<col>.documents.<doc>.<kind>, any segment may be "*"
_EVENT_RE = re.compile(
    r"^databases\.[^.]+\.collections\.[^.]+\.documents\.[^.]+\.(create|update|delete)$"
)


def classify_events(events: Iterable[str]) -> set[ChangeKind]:
    """Change kinds named by a list of event-type strings."""
    kinds = set()
    for name in events:
        m = _EVENT_RE.match(name)
        if m:
            kinds.add(ChangeKind(m.group(1)))
    return kinds


class EventRouter:
    """Routes events from the two session channels to HabitCache refreshes."""

    def __init__(self, cache: HabitCache, habits_channel: str, completions_channel: str,
                 completion_kinds: Iterable[str] = COMPLETION_REFRESH_KINDS) -> None:
        self.cache = cache
        self.habits_channel = habits_channel
        self.completions_channel = completions_channel
        self.completion_kinds = {ChangeKind(k) for k in completion_kinds}
        self._tasks: set[asyncio.Task] = set()

    def on_remote_event(self, channel: str, events: Iterable[str]) -> RefreshAction:
        """Decide which refresh (if any) an event calls for."""
        kinds = classify_events(events)
        if channel == self.habits_channel and kinds:
            return RefreshAction.HABITS
        if channel == self.completions_channel and kinds & self.completion_kinds:
            return RefreshAction.COMPLETIONS
        return RefreshAction.NONE

    def handler_for(self, channel: str):
        """Build the store subscription callback for one channel."""
        def handle(event: RealtimeEvent) -> None:
            self.dispatch(channel, event)
        return handle

    def dispatch(self, channel: str, event: RealtimeEvent) -> RefreshAction:
        action = self.on_remote_event(channel, event.events)
        log.debug("Event on %s → %s", channel, action.value)
        if action is RefreshAction.HABITS:
            self._spawn(self.cache.refresh_habits())
        elif action is RefreshAction.COMPLETIONS:
            self._spawn(self.cache.refresh_completions())
        return action

    def resync(self) -> None:
        """Re-fetch both collections, e.g. after events may have been missed."""
        log.info("Resyncing habits and completions")
        self._spawn(self.cache.refresh_habits())
        self._spawn(self.cache.refresh_completions())

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every scheduled refresh (including ones they trigger) finishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
