"""Transport abstraction — base class for chat front-ends.

A transport renders the habit list and turns user commands into session
calls. HabitSync ships a Telegram transport; others plug in via this
abstraction.
"""

import logging
from abc import ABC, abstractmethod

log = logging.getLogger(__name__)


class Transport(ABC):
    """Abstract base class for chat transports.

    Transports are "dumb pipes" — they handle message I/O only.
    Habit logic lives in HabitSession.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport (connect, listen for messages)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully stop the transport."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport identifier (e.g., 'telegram')."""
        ...
