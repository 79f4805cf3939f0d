# engagement_crm/services/interval_reconciler.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Hashable, Iterable, List, Optional


@dataclass(frozen=True)
class ParticipantEvent:
    """
    A raw join/leave pair as stored in `meeting_activities`.

    `leave` is None while the participant has not left (or the leave event
    was lost); it is then treated as leaving at meeting end.
    """

    user_key: Hashable
    join: datetime
    leave: Optional[datetime] = None


@dataclass(frozen=True)
class Interval:
    join: datetime
    leave: datetime

    @property
    def seconds(self) -> float:
        return (self.leave - self.join).total_seconds()


@dataclass
class ReconciledAttendance:
    """
    Per-user attendance derived from raw events for one meeting.

    Notes
    -----
    - `durations` holds the *sum* of every surviving interval per user.
      Overlapping intervals for the same user (e.g. two devices) are summed,
      not merged.
    - `first_joins` records the earliest raw join per user, unclamped, for
      join-time distributions. Users whose every interval was discarded still
      appear here.
    """

    meeting_start: datetime
    meeting_end: datetime
    intervals: Dict[Hashable, List[Interval]] = field(default_factory=dict)
    durations: Dict[Hashable, float] = field(default_factory=dict)
    first_joins: Dict[Hashable, datetime] = field(default_factory=dict)

    @property
    def meeting_seconds(self) -> float:
        return max((self.meeting_end - self.meeting_start).total_seconds(), 0.0)

    @property
    def attendees(self) -> List[Hashable]:
        return list(self.durations.keys())

    @property
    def attendee_count(self) -> int:
        return len(self.durations)

    @property
    def total_seconds(self) -> float:
        return sum(self.durations.values())

    def duration_for(self, user_key: Hashable) -> float:
        return self.durations.get(user_key, 0.0)


def clamp_interval(
    meeting_start: datetime,
    meeting_end: datetime,
    join: datetime,
    leave: Optional[datetime],
) -> Optional[Interval]:
    """
    Clamp a raw interval to the meeting bounds.

    Returns None when nothing positive is left; intervals are never
    zero-clamped.
    """
    effective_join = max(meeting_start, join)
    effective_leave = min(meeting_end, leave if leave is not None else meeting_end)
    if effective_leave <= effective_join:
        return None
    return Interval(join=effective_join, leave=effective_leave)


def reconcile(
    meeting_start: datetime,
    meeting_end: datetime,
    raw_events: Iterable[ParticipantEvent],
) -> ReconciledAttendance:
    """
    Turn raw join/leave events into per-user clamped intervals and totals.

    A zero-length or inverted meeting yields an empty result. An empty event
    list yields an empty result.
    """
    result = ReconciledAttendance(meeting_start=meeting_start, meeting_end=meeting_end)

    if meeting_end <= meeting_start:
        return result

    for event in raw_events:
        previous_first = result.first_joins.get(event.user_key)
        if previous_first is None or event.join < previous_first:
            result.first_joins[event.user_key] = event.join

        interval = clamp_interval(meeting_start, meeting_end, event.join, event.leave)
        if interval is None:
            continue

        result.intervals.setdefault(event.user_key, []).append(interval)
        result.durations[event.user_key] = (
            result.durations.get(event.user_key, 0.0) + interval.seconds
        )

    for intervals in result.intervals.values():
        intervals.sort(key=lambda iv: (iv.join, iv.leave))

    return result
