"""Remote store abstraction — base class for document stores.

A store holds Habit and Completion documents and pushes change
notifications over realtime channels. HabitSync supports several stores
(Appwrite, local SQLite) via this abstraction.

Documents are plain dicts in Appwrite shape: system fields are
"$"-prefixed ("$id", "$createdAt", "$updatedAt"), user fields are flat.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════

class StoreError(Exception):
    """Any failure talking to the store."""


class DocumentNotFoundError(StoreError):
    """The addressed document does not exist."""


class DocumentConflictError(StoreError):
    """A document with the requested id already exists."""


# ═══════════════════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Query:
    """One predicate of a conjunctive list filter."""
    method: str              # "equal" | "greaterThanEqual" | "limit" | "cursorAfter"
    attribute: str = ""
    values: tuple = ()

    @classmethod
    def equal(cls, attribute: str, value: Any) -> "Query":
        return cls("equal", attribute, (value,))

    @classmethod
    def greater_than_equal(cls, attribute: str, value: Any) -> "Query":
        return cls("greaterThanEqual", attribute, (value,))

    @classmethod
    def limit(cls, count: int) -> "Query":
        return cls("limit", values=(count,))

    @classmethod
    def cursor_after(cls, document_id: str) -> "Query":
        return cls("cursorAfter", values=(document_id,))

    def to_json(self) -> str:
        """Serialize in the Appwrite 1.5+ JSON query syntax."""
        payload: dict = {"method": self.method}
        if self.attribute:
            payload["attribute"] = self.attribute
        payload["values"] = list(self.values)
        return json.dumps(payload)

    def matches(self, doc: dict) -> bool:
        """Evaluate a filter predicate against a document.

        Paging predicates always match; the store applies them separately.
        """
        if self.method in ("limit", "cursorAfter"):
            return True
        actual = doc.get(self.attribute)
        expected = self.values[0] if self.values else None
        if self.method == "equal":
            return any(actual == v for v in self.values)
        if self.method == "greaterThanEqual":
            if actual is None:
                return False
            a, b = _comparable(actual), _comparable(expected)
            try:
                return a >= b
            except TypeError:
                return False
        raise ValueError(f"Unsupported query method: {self.method}")


def _comparable(value: Any) -> Any:
    # ISO timestamps with different offsets must compare as instants
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return value
        if parsed.tzinfo is not None:
            return parsed
    return value


# ═══════════════════════════════════════════════════════════════════════════
# Realtime
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RealtimeEvent:
    """A change notification delivered on one or more channels."""
    events: list[str]
    channels: list[str] = field(default_factory=list)
    payload: dict = field(default_factory=dict)
    timestamp: str = ""


EventHandler = Callable[[RealtimeEvent], None]
Unsubscribe = Callable[[], None]
ReconnectListener = Callable[[], None]


def event_names(database_id: str, collection_id: str, document_id: str,
                kind: str) -> list[str]:
    """All event names a document change is published under.

    Mirrors the wildcard expansion Appwrite performs, e.g.
    "databases.*.collections.*.documents.*.create".
    """
    names = []
    for db in (database_id, "*"):
        for col in (collection_id, "*"):
            for doc in (document_id, "*"):
                base = f"databases.{db}.collections.{col}.documents.{doc}"
                names.append(f"{base}.{kind}")
                names.append(base)
    return names


# ═══════════════════════════════════════════════════════════════════════════
# Store base class
# ═══════════════════════════════════════════════════════════════════════════

class RemoteStore(ABC):
    """Abstract base class for document stores.

    Stores are "dumb pipes" — they persist and notify only.
    Filtering by owner, streak logic etc. live in the core.
    """

    def __init__(self, database_id: str) -> None:
        self.database_id = database_id
        self._reconnect_listeners: list[ReconnectListener] = []

    def channel(self, collection_id: str) -> str:
        """Realtime channel carrying changes to a collection's documents."""
        return f"databases.{self.database_id}.collections.{collection_id}.documents"

    @abstractmethod
    async def list_documents(self, collection_id: str,
                             queries: list[Query] | None = None) -> list[dict]:
        """Return every document matching all queries, in store order."""
        ...

    @abstractmethod
    async def create_document(self, collection_id: str, document_id: str | None,
                              data: dict) -> dict:
        """Create a document. document_id=None lets the store generate one.

        Raises DocumentConflictError if the id is taken.
        """
        ...

    @abstractmethod
    async def update_document(self, collection_id: str, document_id: str,
                              data: dict) -> dict:
        """Merge `data` into an existing document."""
        ...

    @abstractmethod
    async def delete_document(self, collection_id: str, document_id: str) -> None:
        ...

    @abstractmethod
    def subscribe(self, channel: str, handler: EventHandler) -> Unsubscribe:
        """Deliver events on `channel` to `handler` until unsubscribed.

        The returned callable removes the subscription; calling it again
        is a no-op.
        """
        ...

    def add_reconnect_listener(self, listener: ReconnectListener) -> None:
        """Call `listener` whenever the realtime feed comes back after a gap.

        Events sent while disconnected are lost, so listeners re-fetch.
        """
        self._reconnect_listeners.append(listener)

    def _notify_reconnected(self) -> None:
        for listener in list(self._reconnect_listeners):
            try:
                listener()
            except Exception as e:
                log.error("Reconnect listener failed: %s", e, exc_info=True)

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
