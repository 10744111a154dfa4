"""
Tests for the event/session store

Runs against MemoryStore, which shares all validation and derivation logic
with MongoStore through BaseStore.
"""
from datetime import datetime, timedelta, timezone

import pytest

from proctoring.errors import NotFoundError, ValidationError
from proctoring.storage import MemoryStore, get_store


def session_payload(**overrides):
    body = {
        "sessionId": "session-1",
        "candidateId": "cand-1",
        "candidateName": "Asha Rao",
        "startTime": "2024-05-01T10:00:00.000Z",
    }
    body.update(overrides)
    return body


class TestAppendEvent:
    """Tests for append_event"""

    @pytest.mark.asyncio
    async def test_valid_event(self, store, event_payload):
        before = datetime.now(timezone.utc)
        event = await store.append_event(event_payload("phone-detected", meta={"confidence": 0.91}))

        assert event.id
        assert event.event_type == "phone-detected"
        assert event.meta == {"confidence": 0.91}
        assert event.timestamp >= before
        assert event.created_at is not None

    @pytest.mark.asyncio
    async def test_supplied_timestamp_is_kept(self, store, event_payload, t0):
        event = await store.append_event(event_payload("face", minutes=4))
        assert event.timestamp == t0 + timedelta(minutes=4)

    @pytest.mark.asyncio
    async def test_names_are_trimmed(self, store, event_payload):
        event = await store.append_event(event_payload(candidateId="  cand-1 ", candidateName=" Asha Rao  "))

        assert event.candidate_id == "cand-1"
        assert event.candidate_name == "Asha Rao"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["candidateId", "candidateName", "eventType", "message", "sessionId"])
    async def test_missing_field_rejected(self, store, event_payload, field):
        body = event_payload()
        del body[field]

        with pytest.raises(ValidationError, match=field):
            await store.append_event(body)

    @pytest.mark.asyncio
    async def test_blank_field_rejected(self, store, event_payload):
        with pytest.raises(ValidationError, match="message"):
            await store.append_event(event_payload(message="   "))

    @pytest.mark.asyncio
    async def test_unknown_event_type_rejected(self, store, event_payload):
        with pytest.raises(ValidationError, match="dance-detected"):
            await store.append_event(event_payload("dance-detected"))

        assert await store.query_events("cand-1") == []

    @pytest.mark.asyncio
    async def test_bad_timestamp_rejected(self, store, event_payload):
        with pytest.raises(ValidationError, match="timestamp"):
            await store.append_event(event_payload(timestamp="not a time"))

    @pytest.mark.asyncio
    async def test_append_keeps_prior_events(self, store, event_payload):
        first = await store.append_event(event_payload("look-away", minutes=1))
        snapshot = await store.query_events("cand-1")

        await store.append_event(event_payload("book", minutes=2))
        await store.append_event(event_payload("face", minutes=0))
        events = await store.query_events("cand-1")

        assert len(events) == 3
        assert snapshot[0] in events
        assert first in events


class TestQueryEvents:
    """Tests for event queries"""

    @pytest.mark.asyncio
    async def test_ordered_by_timestamp(self, store, event_payload):
        for minutes, event_type in [(5, "book"), (1, "face"), (3, "no-face")]:
            await store.append_event(event_payload(event_type, minutes=minutes))

        events = await store.query_events("cand-1")
        assert [e.event_type for e in events] == ["face", "no-face", "book"]

    @pytest.mark.asyncio
    async def test_filtered_by_candidate_and_session(self, store, event_payload):
        await store.append_event(event_payload("face", minutes=0))
        await store.append_event(event_payload("book", minutes=1, sessionId="session-2"))
        await store.append_event(event_payload("paper", minutes=2, candidateId="cand-2"))

        assert len(await store.query_events("cand-1")) == 2
        assert [e.event_type for e in await store.query_events("cand-1", "session-2")] == ["book"]
        assert await store.query_events("cand-3") == []

    @pytest.mark.asyncio
    async def test_events_by_session(self, store, event_payload):
        await store.upsert_session(session_payload())
        await store.append_event(event_payload("look-away", minutes=2))
        await store.append_event(event_payload("face", minutes=1))

        session, events = await store.query_events_by_session("session-1")
        assert session.session_id == "session-1"
        assert [e.event_type for e in events] == ["face", "look-away"]

    @pytest.mark.asyncio
    async def test_events_by_unknown_session(self, store, event_payload):
        await store.append_event(event_payload())

        with pytest.raises(NotFoundError):
            await store.query_events_by_session("session-1")


class TestUpsertSession:
    """Tests for upsert_session"""

    @pytest.mark.asyncio
    async def test_create_defaults(self, store, t0):
        session = await store.upsert_session(session_payload())

        assert session.start_time == t0
        assert session.status == "active"
        assert session.integrity_score == 100
        assert session.end_time is None
        assert session.duration is None
        assert not session.finished

    @pytest.mark.asyncio
    async def test_start_time_defaults_to_now(self, store):
        before = datetime.now(timezone.utc)
        session = await store.upsert_session(session_payload(startTime=None))
        assert session.start_time >= before

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["sessionId", "candidateId", "candidateName"])
    async def test_missing_field_rejected(self, store, field):
        body = session_payload()
        del body[field]

        with pytest.raises(ValidationError, match=field):
            await store.upsert_session(body)

    @pytest.mark.asyncio
    async def test_invalid_status_rejected(self, store):
        with pytest.raises(ValidationError, match="status"):
            await store.upsert_session(session_payload(status="paused"))

    @pytest.mark.asyncio
    async def test_end_time_completes_session(self, store):
        await store.upsert_session(session_payload())
        session = await store.upsert_session(session_payload(
            endTime="2024-05-01T10:42:31.000Z",
            integrityScore=70,
            status="active",
        ))

        assert session.status == "completed"
        assert session.duration == 43
        assert session.integrity_score == 70
        assert session.finished

    @pytest.mark.asyncio
    async def test_end_without_start_uses_stored_start(self, store):
        await store.upsert_session(session_payload())
        body = session_payload(endTime="2024-05-01T10:20:00.000Z")
        del body["startTime"]
        session = await store.upsert_session(body)

        assert session.start_time == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert session.duration == 20

    @pytest.mark.asyncio
    async def test_terminated_is_kept(self, store):
        session = await store.upsert_session(session_payload(
            endTime="2024-05-01T10:05:00.000Z",
            status="terminated",
        ))
        assert session.status == "terminated"

    @pytest.mark.asyncio
    async def test_update_without_status_keeps_status(self, store):
        await store.upsert_session(session_payload(status="terminated"))
        session = await store.upsert_session(session_payload(candidateName="Asha R."))

        assert session.status == "terminated"
        assert session.candidate_name == "Asha R."

    @pytest.mark.asyncio
    async def test_idempotent(self, store):
        body = session_payload(endTime="2024-05-01T11:00:00.000Z", integrityScore=85)
        first = await store.upsert_session(body)
        second = await store.upsert_session(body)

        assert first == second
        assert second.duration == 60

    @pytest.mark.asyncio
    async def test_one_record_per_session_id(self, store):
        first = await store.upsert_session(session_payload())
        second = await store.upsert_session(session_payload(integrityScore=90))

        assert first.id == second.id
        assert (await store.get_session("session-1")).integrity_score == 90

    @pytest.mark.asyncio
    async def test_last_write_wins(self, store):
        await store.upsert_session(session_payload(integrityScore=90))
        await store.upsert_session(session_payload(integrityScore=60))

        assert (await store.get_session("session-1")).integrity_score == 60


class TestLatestSession:
    """Tests for query_latest_session"""

    @pytest.mark.asyncio
    async def test_none_when_missing(self, store):
        assert await store.query_latest_session("cand-1") is None

    @pytest.mark.asyncio
    async def test_by_session_id(self, store):
        await store.upsert_session(session_payload())
        await store.upsert_session(session_payload(sessionId="session-2"))

        session = await store.query_latest_session("cand-1", "session-1")
        assert session.session_id == "session-1"

    @pytest.mark.asyncio
    async def test_without_session_id_picks_most_recent(self, store):
        # known limitation: concurrent sessions for one candidate are
        # indistinguishable without a sessionId
        await store.upsert_session(session_payload())
        await store.upsert_session(session_payload(sessionId="session-2"))
        await store.upsert_session(session_payload(integrityScore=10))

        session = await store.query_latest_session("cand-1")
        assert session.session_id == "session-2"


class TestGetStore:
    """Tests for get_store"""

    def test_memory_backend(self):
        assert isinstance(get_store("memory"), MemoryStore)
