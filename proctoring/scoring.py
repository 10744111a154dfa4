"""Integrity scoring.

Two rules are in use. The report rule is what the backend applies to stored
events when building reports. The live rule is the running estimate shown to
the proctor during a session; it only counts ``focus-lost`` and a narrower
suspicious set, so the two scores can disagree for the same session.
Neither score is clamped, so it can go below zero.
"""
from collections import Counter
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional

from .models import EventType, Record, Session


FOCUS_LOST_PENALTY = 5
SUSPICIOUS_PENALTY = 10
BASE_SCORE = 100


@dataclass(frozen=True)
class ScoringRule:
    name: str
    focus_lost_types: FrozenSet[str]
    suspicious_types: FrozenSet[str]


REPORT_RULE = ScoringRule(
    name="report",
    focus_lost_types=frozenset({EventType.LOOK_AWAY.value, EventType.FOCUS_LOST.value}),
    suspicious_types=frozenset({
        EventType.MULTIPLE_FACES.value,
        EventType.NO_FACE.value,
        EventType.PHONE_DETECTED.value,
        EventType.NOTES_DETECTED.value,
        EventType.BOOK.value,
        EventType.LAPTOP.value,
    }),
)

LIVE_RULE = ScoringRule(
    name="live",
    focus_lost_types=frozenset({EventType.FOCUS_LOST.value}),
    suspicious_types=frozenset({
        EventType.MULTIPLE_FACES.value,
        EventType.NO_FACE.value,
        EventType.PHONE_DETECTED.value,
        EventType.NOTES_DETECTED.value,
    }),
)


class Statistics(Record):
    total_events: int
    focus_lost_count: int
    suspicious_count: int
    integrity_score: int


def summarize_events(events: Iterable) -> Dict[str, int]:
    """Count events per type."""
    return dict(Counter(e.event_type for e in events))


def compute_integrity_score(focus_lost_count: int, suspicious_count: int) -> int:
    return BASE_SCORE - FOCUS_LOST_PENALTY * focus_lost_count - SUSPICIOUS_PENALTY * suspicious_count


def aggregate(
    events: Iterable,
    rule: ScoringRule = REPORT_RULE,
    integrity_override: Optional[int] = None,
) -> Statistics:
    counts = summarize_events(events)
    focus_lost = sum(counts.get(t, 0) for t in rule.focus_lost_types)
    suspicious = sum(counts.get(t, 0) for t in rule.suspicious_types)
    if integrity_override is None:
        score = compute_integrity_score(focus_lost, suspicious)
    else:
        score = integrity_override
    return Statistics(
        total_events=sum(counts.values()),
        focus_lost_count=focus_lost,
        suspicious_count=suspicious,
        integrity_score=score,
    )


def report_statistics(events: Iterable, session: Optional[Session] = None) -> Statistics:
    """Statistics for a stored event stream; a stored session's score wins."""
    override = session.integrity_score if session is not None else None
    return aggregate(events, REPORT_RULE, override)


def live_statistics(events: Iterable) -> Statistics:
    return aggregate(events, LIVE_RULE)
