import copy
import logging
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument # type: ignore
from pymongo.errors import DuplicateKeyError # type: ignore

from .config import STORE_BACKEND
from .database import EVENT_INDEXES, EVENTS_COLLECTION, SESSION_INDEXES, SESSIONS_COLLECTION, get_database
from .errors import NotFoundError, ValidationError
from .models import Event, EventType, Session, SessionStatus, as_utc, duration_minutes, utcnow

logger = logging.getLogger(__name__)

EVENT_REQUIRED_FIELDS = ("candidateId", "candidateName", "eventType", "message", "sessionId")
SESSION_REQUIRED_FIELDS = ("sessionId", "candidateId", "candidateName")
EVENT_TYPES = frozenset(t.value for t in EventType)
SESSION_STATUSES = frozenset(s.value for s in SessionStatus)

_datetime = TypeAdapter(datetime)
_int = TypeAdapter(int)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _require(payload: Mapping, fields: Tuple[str, ...]) -> None:
    missing = [f for f in fields if _blank(payload.get(f))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    for f in fields:
        if not isinstance(payload[f], str):
            raise ValidationError(f"{f} must be a string")


def _parse_time(payload: Mapping, field: str) -> Optional[datetime]:
    value = payload.get(field)
    if _blank(value):
        return None
    try:
        return as_utc(_datetime.validate_python(value))
    except PydanticValidationError:
        raise ValidationError(f"{field} is not a valid timestamp: {value!r}")


def build_event_document(payload: Mapping) -> Dict[str, Any]:
    """Validate an incoming event and return the document to insert."""
    if not isinstance(payload, Mapping):
        raise ValidationError("Event must be an object")
    _require(payload, EVENT_REQUIRED_FIELDS)

    event_type = payload["eventType"].strip()
    if event_type not in EVENT_TYPES:
        raise ValidationError(f"Invalid eventType: {event_type}")

    meta = payload.get("meta") or {}
    if not isinstance(meta, Mapping):
        raise ValidationError("meta must be an object")

    now = utcnow()
    event = Event(
        id=str(uuid.uuid4()),
        candidate_id=payload["candidateId"].strip(),
        candidate_name=payload["candidateName"].strip(),
        event_type=event_type,
        message=payload["message"],
        timestamp=_parse_time(payload, "timestamp") or now,
        meta=dict(meta),
        session_id=payload["sessionId"].strip(),
        created_at=now,
    )
    return event.model_dump(by_alias=True)


def build_session_fields(payload: Mapping) -> Dict[str, Any]:
    """Validate a session upsert and return the fields it writes.

    Only fields present in the payload are returned, so an update never
    resets what an earlier call stored.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Session must be an object")
    _require(payload, SESSION_REQUIRED_FIELDS)

    fields: Dict[str, Any] = {
        "sessionId": payload["sessionId"].strip(),
        "candidateId": payload["candidateId"].strip(),
        "candidateName": payload["candidateName"].strip(),
    }

    start_time = _parse_time(payload, "startTime")
    if start_time is not None:
        fields["startTime"] = start_time
    end_time = _parse_time(payload, "endTime")
    if end_time is not None:
        fields["endTime"] = end_time

    score = payload.get("integrityScore")
    if score is not None:
        if isinstance(score, bool):
            raise ValidationError("integrityScore must be an integer")
        try:
            fields["integrityScore"] = _int.validate_python(score)
        except PydanticValidationError:
            raise ValidationError(f"integrityScore must be an integer: {score!r}")

    status = payload.get("status")
    if not _blank(status):
        if status not in SESSION_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        fields["status"] = status

    return fields


class BaseStore:
    """Append-only event log plus one upsertable record per session.

    Subclasses supply the document level primitives; validation, defaults
    and the derived session fields live here.
    """

    backend: str = "base"

    async def append_event(self, payload: Mapping) -> Event:
        doc = build_event_document(payload)
        stored = await self._insert_event(doc)
        return Event.model_validate(stored)

    async def upsert_session(self, payload: Mapping) -> Session:
        fields = build_session_fields(payload)
        session_id = fields["sessionId"]
        now = utcnow()

        if "endTime" in fields:
            start_time = fields.get("startTime")
            if start_time is None:
                existing = await self._find_session_doc(session_id)
                start_time = existing["startTime"] if existing else None
            if start_time is None:
                start_time = fields["startTime"] = now
            fields["duration"] = duration_minutes(start_time, fields["endTime"])
            if fields.get("status") != SessionStatus.TERMINATED.value:
                fields["status"] = SessionStatus.COMPLETED.value

        defaults = {
            "_id": str(uuid.uuid4()),
            "startTime": now,
            "integrityScore": 100,
            "status": SessionStatus.ACTIVE.value,
            "createdAt": now,
        }
        on_insert = {k: v for k, v in defaults.items() if k not in fields}
        doc = await self._upsert_session_doc(session_id, fields, on_insert)
        return Session.model_validate(doc)

    async def query_events(self, candidate_id: str, session_id: Optional[str] = None) -> List[Event]:
        query = {"candidateId": candidate_id}
        if session_id:
            query["sessionId"] = session_id
        return [Event.model_validate(doc) for doc in await self._find_event_docs(query)]

    async def query_latest_session(self, candidate_id: str, session_id: Optional[str] = None) -> Optional[Session]:
        query = {"candidateId": candidate_id}
        if session_id:
            query["sessionId"] = session_id
        doc = await self._find_latest_session_doc(query)
        return Session.model_validate(doc) if doc else None

    async def get_session(self, session_id: str) -> Optional[Session]:
        doc = await self._find_session_doc(session_id)
        return Session.model_validate(doc) if doc else None

    async def query_events_by_session(self, session_id: str) -> Tuple[Session, List[Event]]:
        session = await self.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        docs = await self._find_event_docs({"sessionId": session_id})
        return session, [Event.model_validate(doc) for doc in docs]

    async def ping(self) -> None:
        raise NotImplementedError

    async def ensure_indexes(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    async def _insert_event(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def _find_event_docs(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _find_session_doc(self, session_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def _find_latest_session_doc(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def _upsert_session_doc(
        self, session_id: str, fields: Dict[str, Any], on_insert: Dict[str, Any]
    ) -> Dict[str, Any]:
        raise NotImplementedError


class MongoStore(BaseStore):
    backend: str = "mongo"

    def __init__(self, database=None) -> None:
        self.database = database if database is not None else get_database()
        self.events = self.database[EVENTS_COLLECTION]
        self.sessions = self.database[SESSIONS_COLLECTION]

    async def ping(self) -> None:
        await self.database.command("ping")

    async def ensure_indexes(self) -> None:
        await self.events.create_indexes(EVENT_INDEXES)
        await self.sessions.create_indexes(SESSION_INDEXES)

    def close(self) -> None:
        self.database.client.close()

    async def _insert_event(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        await self.events.insert_one(doc)
        return doc

    async def _find_event_docs(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        cursor = self.events.find(query).sort([("timestamp", ASCENDING), ("createdAt", ASCENDING)])
        docs = []
        async for doc in cursor:
            docs.append(doc)
        return docs

    async def _find_session_doc(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.sessions.find_one({"sessionId": session_id})

    async def _find_latest_session_doc(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.sessions.find_one(query, sort=[("createdAt", DESCENDING)])

    async def _upsert_session_doc(
        self, session_id: str, fields: Dict[str, Any], on_insert: Dict[str, Any]
    ) -> Dict[str, Any]:
        update = {"$set": fields}
        if on_insert:
            update["$setOnInsert"] = on_insert
        try:
            return await self.sessions.find_one_and_update(
                {"sessionId": session_id},
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # lost an insert race on the unique sessionId index; the record exists now
            logger.debug(f"Concurrent insert for session {session_id}, retrying as update")
            return await self.sessions.find_one_and_update(
                {"sessionId": session_id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )


class MemoryStore(BaseStore):
    """In-process store with the same ordering rules as :class:`MongoStore`."""

    backend: str = "memory"

    def __init__(self) -> None:
        self._events: List[Dict[str, Any]] = []
        self._sessions: Dict[str, Dict[str, Any]] = {}

    async def ping(self) -> None:
        return None

    async def ensure_indexes(self) -> None:
        return None

    async def _insert_event(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        self._events.append(copy.deepcopy(doc))
        return doc

    async def _find_event_docs(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        matched = [doc for doc in self._events if _matches(doc, query)]
        return [copy.deepcopy(doc) for doc in sorted(matched, key=lambda d: d["timestamp"])]

    async def _find_session_doc(self, session_id: str) -> Optional[Dict[str, Any]]:
        doc = self._sessions.get(session_id)
        return copy.deepcopy(doc) if doc else None

    async def _find_latest_session_doc(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        latest = None
        for doc in self._sessions.values():
            if _matches(doc, query) and (latest is None or doc["createdAt"] >= latest["createdAt"]):
                latest = doc
        return copy.deepcopy(latest) if latest else None

    async def _upsert_session_doc(
        self, session_id: str, fields: Dict[str, Any], on_insert: Dict[str, Any]
    ) -> Dict[str, Any]:
        doc = self._sessions.get(session_id)
        if doc is None:
            doc = self._sessions[session_id] = dict(on_insert)
        doc.update(copy.deepcopy(fields))
        return copy.deepcopy(doc)


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    return all(doc.get(k) == v for k, v in query.items())


def get_store(backend: Optional[str] = None) -> BaseStore:
    backend = (backend or STORE_BACKEND).lower()
    if backend == "memory":
        return MemoryStore()
    return MongoStore()
