from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import Event, Record, Session
from .scoring import Statistics


# Request bodies keep every field optional; presence is checked by the store
# so a missing field is reported as a 400 with the field names.

class LogEventRequest(Record):
    candidate_id: Optional[str] = None
    candidate_name: Optional[str] = None
    event_type: Optional[str] = None
    message: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    meta: Optional[Dict[str, Any]] = None


class UpsertSessionRequest(Record):
    session_id: Optional[str] = None
    candidate_id: Optional[str] = None
    candidate_name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    integrity_score: Optional[int] = None
    status: Optional[str] = None


class EventResponse(Record):
    success: bool = True
    message: str = "Event logged successfully"
    event: Event


class SessionResponse(Record):
    success: bool = True
    message: str = "Session updated successfully"
    session: Session


class SessionWithEventsResponse(Record):
    success: bool = True
    session: Session
    events_count: int
    events: List[Event]


class ReportResponse(Record):
    success: bool = True
    candidate_id: str
    candidate_name: str
    session: Optional[Session] = None
    statistics: Statistics
    events: List[Event]
    total_events: int


class HealthResponse(Record):
    status: str = "OK"
    message: str
    timestamp: datetime
    database: str
