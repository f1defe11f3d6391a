"""Configuration — loads environment variables with sensible defaults.

All tunables live here. Override via .env file or environment variables.
No hardcoded identifiers/timings elsewhere in the codebase.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)

def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))

def _env_bool(key: str, default: bool = False) -> bool:
    return os.getenv(key, str(default)).lower() in ("1", "true", "yes")


# ═══════════════════════════════════════════════════════════════════════════
# Remote store
# ═══════════════════════════════════════════════════════════════════════════
# STORE_BACKEND picks the document store:
#   "appwrite" — hosted Appwrite database (REST + realtime websocket)
#   "sqlite"   — local file, realtime events fanned out in-process

STORE_BACKEND = _env("STORE_BACKEND", "sqlite")

APPWRITE_ENDPOINT = _env("APPWRITE_ENDPOINT", "https://cloud.appwrite.io/v1")
APPWRITE_PROJECT_ID = _env("APPWRITE_PROJECT_ID")
APPWRITE_API_KEY = _env("APPWRITE_API_KEY")      # server key, REST only
APPWRITE_SESSION = _env("APPWRITE_SESSION")      # needed for realtime

DATABASE_ID = _env("DATABASE_ID", "habits_db")
HABITS_COLLECTION_ID = _env("HABITS_COLLECTION_ID", "habits")
COMPLETIONS_COLLECTION_ID = _env("COMPLETIONS_COLLECTION_ID", "habit_completions")

HTTP_TIMEOUT_SECONDS = _env_int("HTTP_TIMEOUT_SECONDS", 15)
LIST_PAGE_SIZE = _env_int("LIST_PAGE_SIZE", 100)

# ═══════════════════════════════════════════════════════════════════════════
# Realtime
# ═══════════════════════════════════════════════════════════════════════════

REALTIME_RECONNECT_SECONDS = _env_int("REALTIME_RECONNECT_SECONDS", 5)
REALTIME_HEARTBEAT_SECONDS = _env_int("REALTIME_HEARTBEAT_SECONDS", 20)

# Change kinds on the completion channel that trigger a completions re-fetch.
# "create" alone misses completions removed from another device.
COMPLETION_REFRESH_KINDS = [
    k.strip() for k in _env("COMPLETION_REFRESH_KINDS", "create,update,delete").split(",")
    if k.strip()
]

# ═══════════════════════════════════════════════════════════════════════════
# Completions
# ═══════════════════════════════════════════════════════════════════════════
# When on, completion ids are <habit_id>_<YYYYMMDD>, so the store itself
# rejects a second completion for the same habit on the same local day.

COMPLETION_KEY_PER_DAY = _env_bool("COMPLETION_KEY_PER_DAY", True)

# ═══════════════════════════════════════════════════════════════════════════
# Identity
# ═══════════════════════════════════════════════════════════════════════════

HABIT_USER_ID = _env("HABIT_USER_ID")

# ═══════════════════════════════════════════════════════════════════════════
# Transport
# ═══════════════════════════════════════════════════════════════════════════

TELEGRAM_BOT_TOKEN = _env("TELEGRAM_BOT_TOKEN")

# ═══════════════════════════════════════════════════════════════════════════
# Owner
# ═══════════════════════════════════════════════════════════════════════════

OWNER_USER_ID = _env_int("OWNER_USER_ID", 0)


def set_owner_user_id(user_id: int) -> None:
    """Set OWNER_USER_ID at runtime and persist to .env for restart safety."""
    global OWNER_USER_ID
    OWNER_USER_ID = user_id
    _persist_owner(user_id)


def _persist_owner(user_id: int) -> None:
    """Write OWNER_USER_ID into .env so it survives restarts."""
    env_path = _PROJECT_ROOT / ".env"
    try:
        if env_path.exists():
            lines = env_path.read_text().splitlines()
            for i, line in enumerate(lines):
                if line.startswith("OWNER_USER_ID="):
                    lines[i] = f"OWNER_USER_ID={user_id}"
                    break
            else:
                lines.append(f"OWNER_USER_ID={user_id}")
            env_path.write_text("\n".join(lines) + "\n")
        else:
            env_path.write_text(f"OWNER_USER_ID={user_id}\n")
    except OSError:
        import logging
        logging.getLogger(__name__).warning(
            "Could not persist OWNER_USER_ID to .env — set it manually"
        )


# ═══════════════════════════════════════════════════════════════════════════
# Database (sqlite backend)
# ═══════════════════════════════════════════════════════════════════════════

DB_PATH = Path(_env("DB_PATH", str(_PROJECT_ROOT / "data" / "habitsync.db")))

# ═══════════════════════════════════════════════════════════════════════════
# Logging
# ═══════════════════════════════════════════════════════════════════════════

LOG_LEVEL = _env("LOG_LEVEL", "INFO")

# ═══════════════════════════════════════════════════════════════════════════
# Timezone (default UTC, override for your locale in .env)
# ═══════════════════════════════════════════════════════════════════════════
# Defines the "local day" that CompletedToday and per-day keys are cut on.

TIMEZONE_OFFSET_HOURS = _env_int("TIMEZONE_OFFSET_HOURS", 0)
