"""HabitSync — main entry point.

Starts all subsystems:
1. Remote store (Appwrite or local SQLite)
2. Session bound to the identity
3. Sign-in of the configured user
4. Transport (Telegram by default)
"""

import asyncio
import logging

from habitsync.config import (
    STORE_BACKEND,
    APPWRITE_ENDPOINT,
    APPWRITE_PROJECT_ID,
    APPWRITE_API_KEY,
    APPWRITE_SESSION,
    DATABASE_ID,
    HTTP_TIMEOUT_SECONDS,
    LIST_PAGE_SIZE,
    REALTIME_RECONNECT_SECONDS,
    REALTIME_HEARTBEAT_SECONDS,
    HABIT_USER_ID,
    DB_PATH,
    LOG_LEVEL,
)
from habitsync.identity import Identity
from habitsync.session import HabitSession
from habitsync.store import RemoteStore
from habitsync.transport.telegram import TelegramTransport

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-5s %(name)s — %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("habitsync")


def build_store(backend: str = STORE_BACKEND) -> RemoteStore:
    if backend == "appwrite":
        from habitsync.store.appwrite import AppwriteStore
        return AppwriteStore(
            APPWRITE_ENDPOINT,
            APPWRITE_PROJECT_ID,
            DATABASE_ID,
            api_key=APPWRITE_API_KEY,
            session=APPWRITE_SESSION,
            timeout=HTTP_TIMEOUT_SECONDS,
            page_size=LIST_PAGE_SIZE,
            reconnect_seconds=REALTIME_RECONNECT_SECONDS,
            heartbeat_seconds=REALTIME_HEARTBEAT_SECONDS,
        )
    if backend == "sqlite":
        from habitsync.store.sqlite import SQLiteStore
        return SQLiteStore(DB_PATH, database_id=DATABASE_ID)
    raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")


async def resolve_user_id(store: RemoteStore) -> str:
    """HABIT_USER_ID, else the account behind the Appwrite session."""
    if HABIT_USER_ID:
        return HABIT_USER_ID
    get_account_id = getattr(store, "get_account_id", None)
    if get_account_id and APPWRITE_SESSION:
        try:
            return await get_account_id()
        except Exception as e:
            log.error("Could not resolve account from session: %s", e)
    return ""


async def main():
    """Boot sequence."""
    log.info("=" * 50)
    log.info("HabitSync starting up...")
    log.info("=" * 50)

    # 1. Store
    store = build_store()
    log.info("Store ready: %s", STORE_BACKEND)

    # 2. Session
    identity = Identity()
    session = HabitSession(store)
    session.bind(identity)

    # 3. Identity
    user_id = await resolve_user_id(store)
    if user_id:
        await identity.sign_in(user_id)
        log.info("Signed in as %s: %d habits", user_id, len(session.habits))
    else:
        log.warning("No user configured — set HABIT_USER_ID or APPWRITE_SESSION")

    # 4. Transport
    transport = TelegramTransport(session, identity, user_id=user_id)
    await transport.start()
    log.info("Transport started: %s", transport.name)

    log.info("=" * 50)
    log.info("HabitSync is running")
    log.info("=" * 50)

    # Keep running
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        log.info("Shutting down...")
        await transport.stop()
        await identity.sign_out()
        await store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
