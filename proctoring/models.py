import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class EventType(str, Enum):
    FACE = "face"
    NO_FACE = "no-face"
    MULTIPLE_FACES = "multiple-faces"
    LOOK_AWAY = "look-away"
    FOCUS_LOST = "focus-lost"
    PHONE_DETECTED = "phone-detected"
    NOTES_DETECTED = "notes-detected"
    BOOK = "book"
    LAPTOP = "laptop"
    KEYBOARD = "keyboard"
    MOUSE = "mouse"
    NOTEBOOK = "notebook"
    PAPER = "paper"
    OBJECT_CLEARED = "object-cleared"
    INTERVIEW_START = "interview-start"
    INTERVIEW_END = "interview-end"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # naive datetimes coming back from the driver are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    """Millisecond precision UTC timestamp, e.g. ``2024-05-01T10:00:00.000Z``."""
    value = as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def epoch_millis(value: datetime) -> int:
    return (as_utc(value) - EPOCH) // timedelta(milliseconds=1)


def duration_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants; half minutes round up."""
    millis = (as_utc(end) - as_utc(start)) / timedelta(milliseconds=1)
    return int(math.floor(millis / 60000 + 0.5))


class Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        frozen=True,
    )


class Event(Record):
    id: Optional[str] = Field(default=None, alias="_id")
    candidate_id: str
    candidate_name: str
    event_type: EventType
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    meta: Dict[str, Any] = Field(default_factory=dict)
    session_id: str
    created_at: Optional[datetime] = None

    @field_validator("timestamp", "created_at")
    @classmethod
    def normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None


class Session(Record):
    id: Optional[str] = Field(default=None, alias="_id")
    session_id: str
    candidate_id: str
    candidate_name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None  # minutes
    integrity_score: int = 100
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", "created_at")
    @classmethod
    def normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @property
    def finished(self) -> bool:
        return self.end_time is not None


class LogEntry(Record):
    """An event as kept in the client's local log.

    Unlike :class:`Event` the type is not restricted to the stored set, so
    purely local notices (``camera-stopped``) still show up in local reports.
    """

    event_type: str
    message: str
    session_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return as_utc(value)
