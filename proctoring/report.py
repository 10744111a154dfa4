from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from .errors import NoDataError
from .models import Session, duration_minutes, epoch_millis, isoformat, utcnow
from .scoring import Statistics, report_statistics


SUMMARY_TITLE = "PROCTORING REPORT SUMMARY"
DETAIL_TITLE = "DETAILED EVENT LOGS"
DETAIL_HEADER = ("Event Type", "Message", "Timestamp", "Session ID")


@dataclass(frozen=True)
class ReportSummary:
    candidate_id: str
    candidate_name: str
    start_time: datetime
    end_time: datetime
    duration: int
    statistics: Statistics


@dataclass(frozen=True)
class CsvReport:
    filename: str
    content: str


def sort_events(events: Sequence) -> List:
    # stable, so events sharing a timestamp keep their log order
    return sorted(events, key=lambda e: e.timestamp)


def _cell(value) -> str:
    # no quoting in this format, commas would shift columns
    return str(value).replace(",", ";")


def summarize_report(
    events: Sequence,
    candidate_id: str,
    candidate_name: Optional[str] = None,
    session: Optional[Session] = None,
    statistics: Optional[Statistics] = None,
) -> ReportSummary:
    if not events:
        raise NoDataError(f"No events found for candidate {candidate_id}")

    ordered = sort_events(events)
    if not candidate_name:
        candidate_name = getattr(ordered[0], "candidate_name", None)
    if not candidate_name and session is not None:
        candidate_name = session.candidate_name

    start_time = session.start_time if session is not None else ordered[0].timestamp
    end_time = session.end_time if session is not None and session.end_time else ordered[-1].timestamp

    if session is not None and session.duration is not None:
        duration = session.duration
    else:
        duration = duration_minutes(start_time, end_time)

    if statistics is None:
        statistics = report_statistics(ordered, session)

    return ReportSummary(
        candidate_id=candidate_id,
        candidate_name=candidate_name or "Unknown",
        start_time=start_time,
        end_time=end_time,
        duration=duration,
        statistics=statistics,
    )


def report_filename(candidate_id: str, generated_at: datetime) -> str:
    return f"ProctoringReport_{candidate_id}_{epoch_millis(generated_at)}.csv"


def build_csv_report_content(summary: ReportSummary, events: Sequence) -> str:
    stats = summary.statistics
    lines = [
        SUMMARY_TITLE,
        "=" * len(SUMMARY_TITLE),
        f"Candidate Name,{_cell(summary.candidate_name)}",
        f"Candidate ID,{_cell(summary.candidate_id)}",
        f"Interview Start Time,{isoformat(summary.start_time)}",
        f"Interview End Time,{isoformat(summary.end_time)}",
        f"Interview Duration (minutes),{summary.duration}",
        f"Focus Lost Count,{stats.focus_lost_count}",
        f"Suspicious Events Count,{stats.suspicious_count}",
        f"Integrity Score,{stats.integrity_score}",
        f"Total Events Logged,{stats.total_events}",
        "",
        DETAIL_TITLE,
        "=" * len(DETAIL_TITLE),
        ",".join(DETAIL_HEADER),
    ]
    for event in sort_events(events):
        lines.append(",".join([
            _cell(event.event_type),
            _cell(event.message),
            isoformat(event.timestamp),
            _cell(event.session_id),
        ]))
    return "\n".join(lines) + "\n"


def build_csv_report(
    events: Sequence,
    candidate_id: str,
    candidate_name: Optional[str] = None,
    session: Optional[Session] = None,
    statistics: Optional[Statistics] = None,
    generated_at: Optional[datetime] = None,
) -> CsvReport:
    """Render the downloadable CSV report for one candidate.

    Raises :class:`NoDataError` when ``events`` is empty. Without a
    ``statistics`` argument the report rule is applied, with the session's
    stored score taking precedence.
    """
    summary = summarize_report(events, candidate_id, candidate_name, session, statistics)
    generated_at = generated_at or utcnow()
    return CsvReport(
        filename=report_filename(candidate_id, generated_at),
        content=build_csv_report_content(summary, events),
    )
