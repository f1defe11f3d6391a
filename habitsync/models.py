"""Habit and Completion records, plus the time helpers shared by the core.

Records are immutable snapshots of store documents. The core never edits
them in place; a refresh replaces them wholesale.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from enum import Enum

from habitsync.config import TIMEZONE_OFFSET_HOURS

TZ = timezone(timedelta(hours=TIMEZONE_OFFSET_HOURS))


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: str) -> "Frequency":
        """Case-insensitive lookup. Raises ValueError on unknown values."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(f.value for f in cls)
            raise ValueError(f"Unknown frequency {value!r} (expected one of: {choices})") from None


# ── Time helpers ─────────────────────────────────────────────────────────


def now_local() -> datetime:
    return datetime.now(TZ)


def start_of_day(moment: datetime) -> datetime:
    """Midnight of the local day containing `moment`."""
    return moment.astimezone(TZ).replace(hour=0, minute=0, second=0, microsecond=0)


def format_timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def completion_key(habit_id: str, moment: datetime) -> str:
    """Deterministic completion id for (habit, local day)."""
    return f"{habit_id}_{moment.astimezone(TZ).strftime('%Y%m%d')}"


# ── Records ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Habit:
    id: str
    user_id: str
    title: str
    description: str = ""
    frequency: str = Frequency.DAILY.value
    streak_count: int = 0
    last_completed: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict) -> "Habit":
        # Unknown frequencies from other clients are kept as-is, only lowercased
        return cls(
            id=doc["$id"],
            user_id=doc.get("user_id", ""),
            title=doc.get("title", ""),
            description=doc.get("description") or "",
            frequency=(doc.get("frequency") or Frequency.DAILY.value).lower(),
            streak_count=max(int(doc.get("streak_count") or 0), 0),
            last_completed=parse_timestamp(doc.get("last_completed")),
        )


@dataclass(frozen=True)
class Completion:
    id: str
    habit_id: str
    user_id: str
    completed_at: datetime

    @classmethod
    def from_document(cls, doc: dict) -> "Completion":
        return cls(
            id=doc["$id"],
            habit_id=doc["habit_id"],
            user_id=doc.get("user_id", ""),
            completed_at=parse_timestamp(doc["completed_at"]),
        )
