"""SQLite document store — local persistence with in-process realtime.

Lightweight schema: one table of JSON documents keyed by (collection, id).
Tables are created automatically on first run. Every write is published
to subscribers of the collection's channel, so the core behaves exactly
as it does against a hosted store.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from habitsync.store import (
    DocumentConflictError,
    DocumentNotFoundError,
    EventHandler,
    Query,
    RealtimeEvent,
    RemoteStore,
    StoreError,
    Unsubscribe,
    event_names,
)

logger = logging.getLogger(__name__)


class SQLiteStore(RemoteStore):
    """Document store backed by a single SQLite file."""

    def __init__(self, db_path: Path, database_id: str = "local") -> None:
        super().__init__(database_id)
        self.db_path = Path(db_path)
        self._handlers: dict[str, list[EventHandler]] = {}
        self.init_db()

    def _connect(self) -> sqlite3.Connection:
        """Return a connection with row_factory set."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        conn = self._connect()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id         TEXT NOT NULL,
                seq        INTEGER NOT NULL,
                data       TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (collection, id)
            );
            CREATE INDEX IF NOT EXISTS idx_documents_order
                ON documents(collection, seq);
        """)
        conn.close()
        logger.info("Document store initialized at %s", self.db_path)

    # ═══════════════════════════════════════════════════════════════════
    # Documents
    # ═══════════════════════════════════════════════════════════════════

    async def list_documents(self, collection_id: str,
                             queries: list[Query] | None = None) -> list[dict]:
        queries = queries or []
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM documents WHERE collection = ? ORDER BY seq",
                (collection_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"list {collection_id} failed: {e}") from e
        finally:
            conn.close()

        docs = [self._to_document(collection_id, r) for r in rows]
        docs = [d for d in docs if all(q.matches(d) for q in queries)]

        # Paging predicates, applied after filtering
        for q in queries:
            if q.method == "cursorAfter":
                ids = [d["$id"] for d in docs]
                cursor = q.values[0]
                docs = docs[ids.index(cursor) + 1:] if cursor in ids else []
        for q in queries:
            if q.method == "limit":
                docs = docs[:q.values[0]]
        return docs

    async def create_document(self, collection_id: str, document_id: str | None,
                              data: dict) -> dict:
        doc_id = document_id or uuid.uuid4().hex[:20]
        now = _now()
        conn = self._connect()
        try:
            seq = conn.execute(
                "SELECT COALESCE(MAX(seq), 0) + 1 FROM documents WHERE collection = ?",
                (collection_id,),
            ).fetchone()[0]
            conn.execute(
                """INSERT INTO documents (collection, id, seq, data, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (collection_id, doc_id, seq, json.dumps(data), now, now),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise DocumentConflictError(
                f"Document {doc_id} already exists in {collection_id}"
            ) from e
        except sqlite3.Error as e:
            raise StoreError(f"create in {collection_id} failed: {e}") from e
        finally:
            conn.close()

        doc = {**data, **self._system_fields(collection_id, doc_id, now, now)}
        self._publish(collection_id, doc_id, "create", doc)
        return doc

    async def update_document(self, collection_id: str, document_id: str,
                              data: dict) -> dict:
        now = _now()
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM documents WHERE collection = ? AND id = ?",
                (collection_id, document_id),
            ).fetchone()
            if not row:
                raise DocumentNotFoundError(
                    f"Document {document_id} not found in {collection_id}"
                )
            merged = {**json.loads(row["data"]), **data}
            conn.execute(
                "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
                (json.dumps(merged), now, collection_id, document_id),
            )
            conn.commit()
            created_at = row["created_at"]
        except sqlite3.Error as e:
            raise StoreError(f"update in {collection_id} failed: {e}") from e
        finally:
            conn.close()

        doc = {**merged, **self._system_fields(collection_id, document_id, created_at, now)}
        self._publish(collection_id, document_id, "update", doc)
        return doc

    async def delete_document(self, collection_id: str, document_id: str) -> None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM documents WHERE collection = ? AND id = ?",
                (collection_id, document_id),
            ).fetchone()
            if not row:
                raise DocumentNotFoundError(
                    f"Document {document_id} not found in {collection_id}"
                )
            conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection_id, document_id),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"delete in {collection_id} failed: {e}") from e
        finally:
            conn.close()

        self._publish(collection_id, document_id, "delete",
                      self._to_document(collection_id, row))

    # ═══════════════════════════════════════════════════════════════════
    # Realtime
    # ═══════════════════════════════════════════════════════════════════

    def subscribe(self, channel: str, handler: EventHandler) -> Unsubscribe:
        self._handlers.setdefault(channel, []).append(handler)
        active = True

        def unsubscribe() -> None:
            nonlocal active
            if not active:
                return
            active = False
            handlers = self._handlers.get(channel, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(channel, None)

        return unsubscribe

    def _publish(self, collection_id: str, document_id: str, kind: str,
                 payload: dict) -> None:
        channel = self.channel(collection_id)
        event = RealtimeEvent(
            events=event_names(self.database_id, collection_id, document_id, kind),
            channels=[channel, "documents"],
            payload=payload,
            timestamp=_now(),
        )
        for handler in list(self._handlers.get(channel, [])):
            try:
                handler(event)
            except Exception as e:
                logger.error("Realtime handler failed on %s: %s", channel, e, exc_info=True)

    # ── Row helpers ───────────────────────────────────────────────────

    def _system_fields(self, collection_id: str, doc_id: str,
                       created_at: str, updated_at: str) -> dict:
        return {
            "$id": doc_id,
            "$collectionId": collection_id,
            "$databaseId": self.database_id,
            "$createdAt": created_at,
            "$updatedAt": updated_at,
        }

    def _to_document(self, collection_id: str, row: sqlite3.Row) -> dict:
        return {
            **json.loads(row["data"]),
            **self._system_fields(collection_id, row["id"], row["created_at"], row["updated_at"]),
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")
