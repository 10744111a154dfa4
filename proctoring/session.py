"""Client side of a proctoring session.

Detection callbacks feed :meth:`ProctoringSession.log_event`. The local log
is the source of truth while the interview runs; the backend only gets a
best-effort copy through :class:`~proctoring.gateway.SyncGateway`.
"""
import asyncio
import logging
import random
import string
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from .errors import NoDataError
from .gateway import SyncGateway
from .models import LogEntry, Session, SessionStatus, duration_minutes, epoch_millis, isoformat, utcnow
from .report import CsvReport, build_csv_report, report_filename
from .scoring import Statistics, live_statistics

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id(now: Optional[datetime] = None) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"session_{epoch_millis(now or utcnow())}_{suffix}"


def generate_candidate_id(now: Optional[datetime] = None) -> str:
    return f"candidate_{epoch_millis(now or utcnow())}"


class ProctoringSession:
    def __init__(
        self,
        candidate_name: str,
        gateway: Optional[SyncGateway] = None,
        candidate_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.candidate_name = candidate_name.strip()
        self.candidate_id = candidate_id or generate_candidate_id()
        self.session_id = session_id or generate_session_id()
        self.gateway = gateway
        self.logs: List[LogEntry] = []
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.active = False
        self.backend_connected = False

    async def __aenter__(self) -> "ProctoringSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.active:
            await self.end()
        if self.gateway is not None:
            await self.gateway.drain()

    @property
    def syncing(self) -> bool:
        return self.gateway is not None and self.backend_connected

    async def start(self, now: Optional[datetime] = None) -> None:
        if self.gateway is not None:
            self.backend_connected = await self.gateway.test_connection()

        self.start_time = now or utcnow()
        self.end_time = None
        self.active = True
        self.log_event(
            "interview-start",
            "Interview session started",
            meta={"sessionId": self.session_id, "candidateId": self.candidate_id},
            timestamp=self.start_time,
        )
        started = self._sync_session({
            "startTime": isoformat(self.start_time),
            "status": SessionStatus.ACTIVE.value,
        })
        # the "active" record must be stored before any later update can overtake it
        if started is not None:
            await started

    def log_event(
        self,
        event_type: str,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> LogEntry:
        """Record an observation locally and mirror it to the backend.

        Must be called from a running event loop when a gateway is attached.
        """
        entry = LogEntry(
            event_type=event_type,
            message=message,
            session_id=self.session_id,
            timestamp=timestamp or utcnow(),
            meta=meta or {},
        )
        self.logs.append(entry)
        logger.debug(f"LOG: {entry.event_type} - {entry.message}")

        if self.syncing and self.candidate_name:
            self.gateway.notify_event({
                "candidateId": self.candidate_id,
                "candidateName": self.candidate_name,
                "sessionId": self.session_id,
                "eventType": entry.event_type,
                "message": entry.message,
                "meta": entry.meta,
                "timestamp": isoformat(entry.timestamp),
            })
        return entry

    def live_statistics(self) -> Statistics:
        return live_statistics(self.logs)

    async def end(self, now: Optional[datetime] = None) -> Statistics:
        """Close the interview; the live score becomes the session's stored score."""
        stats = self.live_statistics()
        if not self.active:
            return stats

        self.end_time = now or utcnow()
        self.log_event(
            "interview-end",
            "Interview session completed",
            meta={
                "duration": duration_minutes(self.start_time, self.end_time),
                "totalEvents": stats.total_events,
                "integrityScore": stats.integrity_score,
            },
            timestamp=self.end_time,
        )
        self.active = False
        self._sync_session({
            "startTime": isoformat(self.start_time),
            "endTime": isoformat(self.end_time),
            "integrityScore": stats.integrity_score,
            "status": SessionStatus.COMPLETED.value,
        })
        return stats

    def local_report(self, generated_at: Optional[datetime] = None) -> CsvReport:
        if self.start_time is None:
            raise NoDataError("Interview has not started yet")

        generated_at = generated_at or utcnow()
        stats = self.live_statistics()
        session = Session(
            session_id=self.session_id,
            candidate_id=self.candidate_id,
            candidate_name=self.candidate_name or "Unknown",
            start_time=self.start_time,
            end_time=self.end_time or generated_at,
            integrity_score=stats.integrity_score,
        )
        return build_csv_report(
            self.logs,
            self.candidate_id,
            candidate_name=session.candidate_name,
            session=session,
            statistics=stats,
            generated_at=generated_at,
        )

    async def download_report(self) -> CsvReport:
        """Prefer the backend's report, fall back to the local one."""
        report = None
        if self.syncing:
            await self.gateway.drain()
            try:
                content = await self.gateway.download_csv(self.candidate_id, self.session_id)
                report = CsvReport(filename=report_filename(self.candidate_id, utcnow()), content=content)
            except httpx.HTTPError as e:
                logger.warning(f"Backend report unavailable, falling back to local CSV: {e!r}")

        if report is None:
            report = self.local_report()
        if self.active:
            await self.end()
        return report

    def _sync_session(self, update: Dict[str, Any]) -> Optional[asyncio.Task]:
        if not self.syncing:
            return None
        return self.gateway.notify_session({
            "sessionId": self.session_id,
            "candidateId": self.candidate_id,
            "candidateName": self.candidate_name,
            **update,
        })
