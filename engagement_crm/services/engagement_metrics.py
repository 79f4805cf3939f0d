# engagement_crm/services/engagement_metrics.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date as date_type, datetime, timedelta
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple

from engagement_crm.schemas.analytics import (
    AttendanceSample,
    DurationBreakdown,
    EngagementBucket,
    JoinTimeBucket,
    ParticipantDuration,
    TimelinePoint,
)
from engagement_crm.services.interval_reconciler import (
    ParticipantEvent,
    ReconciledAttendance,
    reconcile,
)

HIGH_ENGAGEMENT_RATIO = 0.9
MEDIUM_ENGAGEMENT_RATIO = 0.6
JOIN_BUCKET_MINUTES = 5
SAMPLE_STEP_MINUTES = 5
TIMELINE_DAYS_BEFORE = 14
TIMELINE_DAYS_AFTER = 1


@dataclass(frozen=True)
class MeetingSpan:
    """
    Wall-clock bounds of one meeting, as used by cross-meeting metrics.

    `end` is the actual end when observed, else the scheduled end, else None.
    """

    meeting_id: Hashable
    start: Optional[datetime]
    end: Optional[datetime]

    @property
    def seconds(self) -> float:
        if self.start is None or self.end is None:
            return 0.0
        return max((self.end - self.start).total_seconds(), 0.0)


@dataclass(frozen=True)
class UserEngagement:
    user_key: Hashable
    score: float
    meetings_attended: int


def _round2(value: float) -> float:
    return round(value, 2)


def attendance_rate(attendee_count: int, total_invited: int) -> float:
    """
    Distinct attendees / invited * 100, rounded to 2 decimals.

    Returns 0 when nobody was invited. Capped at 100 because uninvited
    participants can outnumber the invite list.
    """
    if total_invited <= 0 or attendee_count <= 0:
        return 0.0
    return _round2(min(attendee_count / float(total_invited), 1.0) * 100.0)


def viewed_fraction(attended_seconds: float, meeting_seconds: float) -> float:
    if meeting_seconds <= 0:
        return 0.0
    return min(1.0, max(attended_seconds, 0.0) / meeting_seconds)


def average_viewed_percentage(attendance: ReconciledAttendance) -> float:
    """
    Mean over attendees of min(1, attended / meeting duration), as a percent.
    """
    meeting_seconds = attendance.meeting_seconds
    if meeting_seconds <= 0 or attendance.attendee_count == 0:
        return 0.0
    viewed_sum = sum(
        viewed_fraction(seconds, meeting_seconds)
        for seconds in attendance.durations.values()
    )
    return _round2(viewed_sum / attendance.attendee_count * 100.0)


def viewed_percentages(attendance: ReconciledAttendance) -> Dict[Hashable, float]:
    meeting_seconds = attendance.meeting_seconds
    return {
        user_key: _round2(viewed_fraction(seconds, meeting_seconds) * 100.0)
        for user_key, seconds in attendance.durations.items()
    }


def duration_breakdown(spans: Iterable[MeetingSpan]) -> DurationBreakdown:
    """
    Bucket meetings by wall-clock duration.

    Meetings without a start or without any end are excluded rather than
    counted as zero-length.
    """
    breakdown = DurationBreakdown()
    for span in spans:
        if span.start is None or span.end is None:
            continue

        minutes = (span.end - span.start).total_seconds() / 60.0
        if minutes <= 15:
            breakdown.up_to_15 += 1
        elif minutes <= 30:
            breakdown.up_to_30 += 1
        elif minutes <= 45:
            breakdown.up_to_45 += 1
        elif minutes <= 60:
            breakdown.up_to_60 += 1
        else:
            breakdown.over_60 += 1
    return breakdown


def default_timeline_range(today: date_type) -> Tuple[date_type, date_type]:
    return (
        today - timedelta(days=TIMELINE_DAYS_BEFORE),
        today + timedelta(days=TIMELINE_DAYS_AFTER),
    )


def build_timeline(
    start_times: Iterable[datetime],
    range_start: date_type,
    range_end: date_type,
) -> List[TimelinePoint]:
    """
    Dense per-day meeting counts for [range_start, range_end], both inclusive.

    Every day is emitted, including days with no meetings. An inverted range
    yields an empty list.
    """
    counts: Dict[date_type, int] = {}
    for started in start_times:
        day = started.date()
        if range_start <= day <= range_end:
            counts[day] = counts.get(day, 0) + 1

    timeline: List[TimelinePoint] = []
    current = range_start
    while current <= range_end:
        timeline.append(TimelinePoint(date=current, count=counts.get(current, 0)))
        current += timedelta(days=1)
    return timeline


def engagement_distribution(attendance: ReconciledAttendance) -> List[EngagementBucket]:
    """
    Partition attendees into High/Medium/Low relative to this meeting's
    average attended duration (>= 90% high, >= 60% medium, else low).
    """
    high = medium = low = 0
    count = attendance.attendee_count
    average = attendance.total_seconds / count if count else 0.0

    for seconds in attendance.durations.values():
        if seconds >= average * HIGH_ENGAGEMENT_RATIO:
            high += 1
        elif seconds >= average * MEDIUM_ENGAGEMENT_RATIO:
            medium += 1
        else:
            low += 1

    return [
        EngagementBucket(name="High Engagement", value=high, color="#22c55e"),
        EngagementBucket(name="Medium Engagement", value=medium, color="#f59e0b"),
        EngagementBucket(name="Low Engagement", value=low, color="#ef4444"),
    ]


def join_time_distribution(
    attendance: ReconciledAttendance,
    bucket_minutes: int = JOIN_BUCKET_MINUTES,
) -> List[JoinTimeBucket]:
    """
    Count participants by first-join offset from meeting start.

    Early joiners (before the start) land in bucket 0.
    """
    bucket_seconds = bucket_minutes * 60
    buckets: Dict[int, int] = {}
    for first_join in attendance.first_joins.values():
        offset = max(0.0, (first_join - attendance.meeting_start).total_seconds())
        bucket = int(offset // bucket_seconds) * bucket_minutes
        buckets[bucket] = buckets.get(bucket, 0) + 1

    return [
        JoinTimeBucket(time=minute, count=count)
        for minute, count in sorted(buckets.items())
    ]


def attendance_over_time(
    events: Sequence[ParticipantEvent],
    meeting_start: datetime,
    meeting_end: datetime,
    step_minutes: int = SAMPLE_STEP_MINUTES,
) -> List[AttendanceSample]:
    """
    Sample the number of distinct participants present every `step_minutes`
    from meeting start to meeting end (both inclusive).
    """
    samples: List[AttendanceSample] = []
    if meeting_end < meeting_start:
        return samples

    step = timedelta(minutes=step_minutes)
    instant = meeting_start
    while instant <= meeting_end:
        present = {
            event.user_key
            for event in events
            if event.join <= instant
            and (event.leave if event.leave is not None else meeting_end) >= instant
        }
        offset = round((instant - meeting_start).total_seconds() / 60.0)
        samples.append(AttendanceSample(time=f"{offset}m", count=len(present)))
        instant += step
    return samples


def participant_durations(
    attendance: ReconciledAttendance,
    names: Mapping[Hashable, str],
    limit: int = 10,
) -> List[ParticipantDuration]:
    rows = [
        ParticipantDuration(
            name=names.get(user_key) or str(user_key),
            duration=round(seconds / 60.0),
        )
        for user_key, seconds in attendance.durations.items()
    ]
    rows.sort(key=lambda row: row.duration, reverse=True)
    return rows[:limit]


def meeting_engagement_score(attendance: ReconciledAttendance) -> int:
    """
    Average attended duration relative to the meeting duration, in percent.
    """
    meeting_seconds = attendance.meeting_seconds
    count = attendance.attendee_count
    if meeting_seconds <= 0 or count == 0:
        return 0
    return round(attendance.total_seconds / count / meeting_seconds * 100.0)


def engagement_leaderboard(
    spans: Sequence[MeetingSpan],
    events_by_meeting: Mapping[Hashable, Sequence[ParticipantEvent]],
    top_n: int,
) -> List[UserEngagement]:
    """
    Rank users by a blend of relative session length and attendance frequency.

    Per user:
        duration_score   = avg attended seconds per attended meeting
                           / avg duration of the meetings they attended
        attendance_score = meetings attended / meetings in the period
        score            = (0.5 * duration_score + 0.5 * attendance_score) * 100

    Sorted descending with ties kept in first-seen order; truncated to top_n.
    """
    total_meetings = len(spans)
    if total_meetings == 0 or top_n <= 0:
        return []

    attended_seconds: Dict[Hashable, float] = {}
    meeting_seconds: Dict[Hashable, float] = {}
    attended_meetings: Dict[Hashable, set] = {}

    for span in spans:
        events = events_by_meeting.get(span.meeting_id) or []
        if span.start is None or span.end is None or not events:
            continue

        attendance = reconcile(span.start, span.end, events)
        for user_key, seconds in attendance.durations.items():
            attended_seconds[user_key] = attended_seconds.get(user_key, 0.0) + seconds
            meetings = attended_meetings.setdefault(user_key, set())
            if span.meeting_id not in meetings:
                meetings.add(span.meeting_id)
                meeting_seconds[user_key] = meeting_seconds.get(user_key, 0.0) + span.seconds

    ranked: List[UserEngagement] = []
    for user_key, meetings in attended_meetings.items():
        attended_count = len(meetings)
        avg_attended = attended_seconds[user_key] / attended_count
        avg_meeting = meeting_seconds[user_key] / attended_count

        duration_score = avg_attended / avg_meeting if avg_meeting > 0 else 0.0
        attendance_score = attended_count / float(total_meetings)
        score = duration_score * 0.5 + attendance_score * 0.5

        ranked.append(
            UserEngagement(
                user_key=user_key,
                score=_round2(score * 100.0),
                meetings_attended=attended_count,
            )
        )

    # sorted() is stable, so equal scores keep first-seen order.
    ranked = sorted(ranked, key=lambda entry: entry.score, reverse=True)
    return ranked[:top_n]
