"""Appwrite store — documents over REST, change notifications over websocket.

REST calls go through one shared httpx.AsyncClient. Realtime uses a single
websocket carrying every subscribed channel; when the channel set changes
the socket is re-opened with the new set, the same way Appwrite's own SDKs
behave.

Setup:
  1. Create a database with "habits" and "habit_completions" collections
  2. Set APPWRITE_PROJECT_ID and APPWRITE_SESSION (or APPWRITE_API_KEY for
     REST-only use) in .env
"""

import asyncio
import logging
import uuid
from typing import Callable
from urllib.parse import urlsplit, urlunsplit

import aiohttp
import httpx

from habitsync.store import (
    DocumentConflictError,
    DocumentNotFoundError,
    EventHandler,
    Query,
    RealtimeEvent,
    RemoteStore,
    StoreError,
    Unsubscribe,
)

log = logging.getLogger(__name__)


def realtime_url(endpoint: str) -> str:
    """https://host/v1 -> wss://host/v1/realtime"""
    parts = urlsplit(endpoint)
    scheme = "wss" if parts.scheme == "https" else "ws"
    return urlunsplit((scheme, parts.netloc, parts.path.rstrip("/") + "/realtime", "", ""))


class AppwriteStore(RemoteStore):
    """Appwrite Databases API + Realtime."""

    def __init__(
        self,
        endpoint: str,
        project_id: str,
        database_id: str,
        api_key: str = "",
        session: str = "",
        timeout: float = 15,
        page_size: int = 100,
        reconnect_seconds: float = 5,
        heartbeat_seconds: float = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(database_id)
        self.endpoint = endpoint.rstrip("/")
        self.project_id = project_id
        self.page_size = page_size

        headers = {"X-Appwrite-Project": project_id}
        if api_key:
            headers["X-Appwrite-Key"] = api_key
        if session:
            headers["X-Appwrite-Session"] = session
        self._http = httpx.AsyncClient(
            base_url=self.endpoint,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._realtime = AppwriteRealtime(
            realtime_url(self.endpoint), project_id, session,
            reconnect_seconds=reconnect_seconds,
            heartbeat_seconds=heartbeat_seconds,
            on_reconnect=self._notify_reconnected,
        )

    # ═══════════════════════════════════════════════════════════════════
    # REST
    # ═══════════════════════════════════════════════════════════════════

    def _documents_path(self, collection_id: str) -> str:
        return f"/databases/{self.database_id}/collections/{collection_id}/documents"

    async def _request(self, method: str, path: str, **kwargs) -> dict | None:
        """Send a request, mapping HTTP failures to StoreError subclasses."""
        try:
            resp = await self._http.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:200]
            if status == 404:
                raise DocumentNotFoundError(detail) from e
            if status == 409:
                raise DocumentConflictError(detail) from e
            raise StoreError(f"Appwrite {method} {path}: {status} {detail}") from e
        except httpx.RequestError as e:
            raise StoreError(f"Appwrite {method} {path}: {e}") from e

        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def list_documents(self, collection_id: str,
                             queries: list[Query] | None = None) -> list[dict]:
        """List all matching documents, paging with limit + cursorAfter."""
        filters = [q for q in (queries or []) if q.method not in ("limit", "cursorAfter")]
        docs: list[dict] = []
        cursor: str | None = None

        while True:
            page_queries = filters + [Query.limit(self.page_size)]
            if cursor:
                page_queries.append(Query.cursor_after(cursor))
            result = await self._request(
                "GET", self._documents_path(collection_id),
                params=[("queries[]", q.to_json()) for q in page_queries],
            )
            page = (result or {}).get("documents", [])
            docs.extend(page)
            if len(page) < self.page_size:
                return docs
            cursor = page[-1]["$id"]

    async def create_document(self, collection_id: str, document_id: str | None,
                              data: dict) -> dict:
        return await self._request(
            "POST", self._documents_path(collection_id),
            json={"documentId": document_id or uuid.uuid4().hex[:20], "data": data},
        )

    async def update_document(self, collection_id: str, document_id: str,
                              data: dict) -> dict:
        return await self._request(
            "PATCH", f"{self._documents_path(collection_id)}/{document_id}",
            json={"data": data},
        )

    async def delete_document(self, collection_id: str, document_id: str) -> None:
        await self._request(
            "DELETE", f"{self._documents_path(collection_id)}/{document_id}",
        )

    async def get_account_id(self) -> str:
        """User id of the session this store is authenticated as."""
        account = await self._request("GET", "/account")
        return (account or {}).get("$id", "")

    # ═══════════════════════════════════════════════════════════════════
    # Realtime
    # ═══════════════════════════════════════════════════════════════════

    def subscribe(self, channel: str, handler: EventHandler) -> Unsubscribe:
        return self._realtime.subscribe(channel, handler)

    async def close(self) -> None:
        await self._realtime.close()
        await self._http.aclose()


class AppwriteRealtime:
    """One websocket, many channels.

    Lifecycle:
      - subscribe()/unsubscribe() restart the connection task with the new
        channel set (no task when nothing is subscribed)
      - On disconnect or error: logs warning, waits, reconnects
      - on_reconnect fires after every successful reconnect (not the first
        connect), since events sent during the gap are gone
    """

    def __init__(self, url: str, project_id: str, session: str = "",
                 reconnect_seconds: float = 5, heartbeat_seconds: float = 20,
                 on_reconnect: Callable[[], None] | None = None) -> None:
        self.url = url
        self.project_id = project_id
        self.session = session
        self.reconnect_seconds = reconnect_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self.on_reconnect = on_reconnect
        self._handlers: dict[str, list[EventHandler]] = {}
        self._task: asyncio.Task | None = None

    @property
    def channels(self) -> list[str]:
        return sorted(self._handlers)

    def subscribe(self, channel: str, handler: EventHandler) -> Unsubscribe:
        is_new = channel not in self._handlers
        self._handlers.setdefault(channel, []).append(handler)
        if is_new:
            self._restart()
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
                self._restart()

        return unsubscribe

    def _restart(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._handlers:
            self._task = asyncio.get_running_loop().create_task(self._run(self.channels))

    def _params(self, channels: list[str]) -> list[tuple[str, str]]:
        return [("project", self.project_id)] + [("channels[]", c) for c in channels]

    async def _run(self, channels: list[str]) -> None:
        """Connect, authenticate, dispatch. Reconnect forever until cancelled."""
        connected_before = False
        while True:
            try:
                async with aiohttp.ClientSession() as http:
                    async with http.ws_connect(
                        self.url,
                        params=self._params(channels),
                        heartbeat=self.heartbeat_seconds,
                    ) as ws:
                        log.info("Realtime connected (%d channels)", len(channels))
                        if connected_before and self.on_reconnect is not None:
                            self.on_reconnect()
                        connected_before = True
                        if self.session:
                            await ws.send_json(
                                {"type": "authentication", "data": {"session": self.session}}
                            )
                        async for msg in ws:
                            if msg.type == aiohttp.WSMsgType.TEXT:
                                self.handle_message(msg.json())
                            elif msg.type == aiohttp.WSMsgType.ERROR:
                                log.warning("Realtime socket error: %s", ws.exception())
                                break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("Realtime connection failed: %s", e)

            log.info("Realtime reconnecting in %ss", self.reconnect_seconds)
            await asyncio.sleep(self.reconnect_seconds)

    def handle_message(self, message: dict) -> None:
        """Route one decoded realtime frame to channel handlers."""
        kind = message.get("type")
        data = message.get("data") or {}

        if kind == "error":
            log.warning("Realtime error from server: %s", data.get("message", data))
            return
        if kind != "event":
            return  # "connected", "response", pongs

        event = RealtimeEvent(
            events=list(data.get("events", [])),
            channels=list(data.get("channels", [])),
            payload=data.get("payload") or {},
            timestamp=str(data.get("timestamp", "")),
        )
        for channel in event.channels:
            for handler in list(self._handlers.get(channel, [])):
                try:
                    handler(event)
                except Exception as e:
                    log.error("Realtime handler failed on %s: %s", channel, e, exc_info=True)

    async def close(self) -> None:
        self._handlers.clear()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
