"""Identity — who is signed in, and who wants to know when that changes.

Single-user process: one current user id or None. Listeners are awaited in
registration order on every transition.
"""

import logging
from typing import Awaitable, Callable

log = logging.getLogger(__name__)

Listener = Callable[[str | None], Awaitable[None]]


class Identity:
    def __init__(self) -> None:
        self._user_id: str | None = None
        self._listeners: list[Listener] = []

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def sign_in(self, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id must not be empty")
        await self._set(user_id)

    async def sign_out(self) -> None:
        await self._set(None)

    async def _set(self, user_id: str | None) -> None:
        if user_id == self._user_id:
            return
        log.info("Identity: %s → %s", self._user_id or "(none)", user_id or "(none)")
        self._user_id = user_id
        for listener in self._listeners:
            await listener(user_id)
