# engagement_crm/services/analytics.py
from __future__ import annotations

from collections import defaultdict
from datetime import date as date_type, datetime, time, timedelta, timezone
from typing import Dict, Hashable, List, Optional, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_crm.core.config import get_settings
from engagement_crm.core.errors import Forbidden, NotFound
from engagement_crm.models.meeting import Meeting
from engagement_crm.models.meeting_activity import MeetingActivity
from engagement_crm.models.meeting_engagement import MeetingEngagement
from engagement_crm.models.user import User
from engagement_crm.schemas.analytics import (
    ActivityAnalytics,
    AiInsights,
    EngagementTrendPoint,
    LeaderboardEntry,
    MeetingDetailsAnalytics,
    MeetingsStats,
    ViewPercentageEntry,
)
from engagement_crm.services import engagement_metrics as metrics
from engagement_crm.services.insights_client import InsightsClient, generate_insights
from engagement_crm.services.interval_reconciler import (
    ParticipantEvent,
    ReconciledAttendance,
    reconcile,
)
from engagement_crm.services.lifecycle_tracker import activities_to_events, activity_user_key


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _day_start(day: date_type) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _meeting_window(stmt, start_date: Optional[date_type], end_date: Optional[date_type]):
    """
    Restrict a meetings query to [start_date, end_date] on scheduled start,
    both days inclusive.
    """
    if start_date is not None:
        stmt = stmt.where(Meeting.scheduled_start >= _day_start(start_date))
    if end_date is not None:
        stmt = stmt.where(Meeting.scheduled_start < _day_start(end_date + timedelta(days=1)))
    return stmt


async def _owner_meetings(
    db: AsyncSession,
    owner_id: int,
    start_date: Optional[date_type] = None,
    end_date: Optional[date_type] = None,
) -> List[Meeting]:
    stmt = _meeting_window(
        select(Meeting).where(Meeting.owner_id == owner_id),
        start_date,
        end_date,
    ).order_by(Meeting.scheduled_start, Meeting.id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_owned_meeting(db: AsyncSession, meeting_id: int, owner_id: int) -> Meeting:
    """
    Load a meeting for the calling organizer.

    Raises NotFound when it does not exist and Forbidden when another
    organizer owns it.
    """
    meeting = await db.get(Meeting, meeting_id)
    if meeting is None:
        raise NotFound(f"meeting {meeting_id} not found")
    if meeting.owner_id != owner_id:
        raise Forbidden(f"meeting {meeting_id} belongs to another organizer")
    return meeting


async def _activities_by_meeting(
    db: AsyncSession,
    meeting_ids: List[int],
) -> Dict[int, List[MeetingActivity]]:
    grouped: Dict[int, List[MeetingActivity]] = defaultdict(list)
    if not meeting_ids:
        return grouped

    result = await db.execute(
        select(MeetingActivity)
        .where(MeetingActivity.meeting_id.in_(meeting_ids))
        .order_by(MeetingActivity.joining_time, MeetingActivity.id)
    )
    for activity in result.scalars().all():
        grouped[activity.meeting_id].append(activity)
    return grouped


async def _invited_user_ids(db: AsyncSession, meeting_id: int) -> List[int]:
    result = await db.execute(
        select(MeetingEngagement.user_id).where(MeetingEngagement.meeting_id == meeting_id)
    )
    return list(result.scalars().all())


async def _invited_counts(db: AsyncSession, meeting_ids: List[int]) -> Dict[int, int]:
    if not meeting_ids:
        return {}
    result = await db.execute(
        select(MeetingEngagement.meeting_id, func.count(MeetingEngagement.id))
        .where(MeetingEngagement.meeting_id.in_(meeting_ids))
        .group_by(MeetingEngagement.meeting_id)
    )
    return {meeting_id: count for meeting_id, count in result.all()}


def _reconcile_meeting(
    meeting: Meeting,
    activities: List[MeetingActivity],
) -> Optional[ReconciledAttendance]:
    start, end = meeting.effective_start, meeting.effective_end
    if start is None or end is None:
        return None
    return reconcile(start, end, activities_to_events(activities))


def _invited_attendees(attendance: Optional[ReconciledAttendance], invited: List[int]) -> int:
    if attendance is None:
        return 0
    invited_set = set(invited)
    return sum(1 for key in attendance.durations if key in invited_set)


async def _user_names(db: AsyncSession, user_ids: List[int]) -> Dict[int, str]:
    if not user_ids:
        return {}
    result = await db.execute(select(User.id, User.name).where(User.id.in_(user_ids)))
    return {user_id: name for user_id, name in result.all()}


def _participant_names(activities: List[MeetingActivity], users: Dict[int, str]) -> Dict[Hashable, str]:
    names: Dict[Hashable, str] = {}
    for activity in activities:
        key = activity_user_key(activity)
        if key in names:
            continue
        if activity.user_id is not None and users.get(activity.user_id):
            names[key] = users[activity.user_id]
        else:
            names[key] = activity.participant_name or activity.participant_email or activity.participant_key
    return names


# ---------------------------------------------------------------------------
# Organizer-level
# ---------------------------------------------------------------------------


async def get_meetings_stats(
    db: AsyncSession,
    owner_id: int,
    start_date: Optional[date_type] = None,
    end_date: Optional[date_type] = None,
    today: Optional[date_type] = None,
) -> MeetingsStats:
    """
    Organizer overview.

    Steps
    -----
    1) Count members created by the organizer (the organizer excluded).
    2) Load the organizer's meetings in the optional window.
    3) avg_engagement_rate = attended invitations / all invitations * 100.
    4) Duration breakdown over effective start/end.
    5) Dense timeline over [start_date, end_date], defaulting to
       14 days before `today` through 1 day after.
    """
    members = await db.execute(
        select(func.count(User.id)).where(User.creator_id == owner_id, User.id != owner_id)
    )
    total_members = members.scalar_one()

    meetings = await _owner_meetings(db, owner_id, start_date, end_date)
    meeting_ids = [m.id for m in meetings]

    avg_engagement_rate = 0.0
    if meeting_ids:
        counts = await db.execute(
            select(
                func.count(MeetingEngagement.id),
                func.sum(case((MeetingEngagement.attended.is_(True), 1), else_=0)),
            ).where(MeetingEngagement.meeting_id.in_(meeting_ids))
        )
        total_rows, attended_rows = counts.one()
        attended_rows = attended_rows or 0
        if total_rows:
            avg_engagement_rate = round(attended_rows / float(total_rows) * 100.0, 2)

    spans = [metrics.MeetingSpan(m.id, m.effective_start, m.effective_end) for m in meetings]

    range_start, range_end = metrics.default_timeline_range(today or _utcnow().date())
    if start_date is not None:
        range_start = start_date
    if end_date is not None:
        range_end = end_date

    return MeetingsStats(
        total_members=total_members,
        total_meetings=len(meetings),
        avg_engagement_rate=avg_engagement_rate,
        duration_breakdown=metrics.duration_breakdown(spans),
        timeline=metrics.build_timeline(
            [m.effective_start for m in meetings if m.effective_start is not None],
            range_start,
            range_end,
        ),
    )


async def get_ai_insights(
    db: AsyncSession,
    owner_id: int,
    start_date: Optional[date_type] = None,
    end_date: Optional[date_type] = None,
    client: Optional[InsightsClient] = None,
) -> AiInsights:
    stats = await get_meetings_stats(db, owner_id, start_date, end_date)
    return await generate_insights(stats, client=client)


async def get_engagement_leaderboard(
    db: AsyncSession,
    owner_id: int,
    start_date: Optional[date_type] = None,
    end_date: Optional[date_type] = None,
    top_n: Optional[int] = None,
) -> List[LeaderboardEntry]:
    """
    Cross-meeting engagement ranking of known users.

    Guests that never matched a user are left out of the ranking.
    """
    meetings = await _owner_meetings(db, owner_id, start_date, end_date)
    activities = await _activities_by_meeting(db, [m.id for m in meetings])

    events_by_meeting: Dict[Hashable, List[ParticipantEvent]] = {
        meeting_id: [
            ParticipantEvent(user_key=a.user_id, join=a.joining_time, leave=a.leaving_time)
            for a in rows
            if a.user_id is not None
        ]
        for meeting_id, rows in activities.items()
    }
    spans = [metrics.MeetingSpan(m.id, m.effective_start, m.effective_end) for m in meetings]

    ranked = metrics.engagement_leaderboard(
        spans,
        events_by_meeting,
        top_n if top_n is not None else get_settings().LEADERBOARD_SIZE,
    )
    names = await _user_names(db, [entry.user_key for entry in ranked])

    return [
        LeaderboardEntry(
            user_id=entry.user_key,
            user_name=names.get(entry.user_key) or "Unknown",
            engagement_score=entry.score,
            total_meetings_attended=entry.meetings_attended,
        )
        for entry in ranked
    ]


async def get_engagement_trend(
    db: AsyncSession,
    owner_id: int,
    start_date: Optional[date_type] = None,
    end_date: Optional[date_type] = None,
) -> List[EngagementTrendPoint]:
    meetings = await _owner_meetings(db, owner_id, start_date, end_date)
    meeting_ids = [m.id for m in meetings]
    activities = await _activities_by_meeting(db, meeting_ids)
    invited_counts = await _invited_counts(db, meeting_ids)

    engaged = await db.execute(
        select(MeetingEngagement.meeting_id, MeetingEngagement.user_id).where(
            MeetingEngagement.meeting_id.in_(meeting_ids)
        )
    )
    invited_by_meeting: Dict[int, List[int]] = defaultdict(list)
    for meeting_id, user_id in engaged.all():
        invited_by_meeting[meeting_id].append(user_id)

    points: List[Tuple[datetime, int, EngagementTrendPoint]] = []
    for meeting in meetings:
        start = meeting.effective_start
        attendance = _reconcile_meeting(meeting, activities.get(meeting.id, []))
        invited = invited_counts.get(meeting.id, 0)
        attendees = _invited_attendees(attendance, invited_by_meeting.get(meeting.id, []))

        points.append(
            (
                start,
                meeting.id,
                EngagementTrendPoint(
                    meeting_id=meeting.id,
                    date=start.date(),
                    attendance_rate=metrics.attendance_rate(attendees, invited),
                    average_viewed_percentage=(
                        metrics.average_viewed_percentage(attendance) if attendance else 0.0
                    ),
                    attendees=attendees,
                    invited=invited,
                ),
            )
        )

    points.sort(key=lambda item: (item[0], item[1]))
    return [point for _, _, point in points]


# ---------------------------------------------------------------------------
# Meeting-level
# ---------------------------------------------------------------------------


async def get_activity_analytics(
    db: AsyncSession,
    meeting_id: int,
    owner_id: int,
) -> ActivityAnalytics:
    """
    Attendance rate and average viewed percentage for one meeting.

    Attendance counts invited users with positive attended time; the viewed
    percentage averages over every participant with positive attended time.
    """
    meeting = await get_owned_meeting(db, meeting_id, owner_id)
    activities = (await _activities_by_meeting(db, [meeting.id])).get(meeting.id, [])
    invited = await _invited_user_ids(db, meeting.id)

    attendance = _reconcile_meeting(meeting, activities)
    if attendance is None:
        return ActivityAnalytics(attendance_rate=0.0, average_viewed_percentage=0.0)

    return ActivityAnalytics(
        attendance_rate=metrics.attendance_rate(
            _invited_attendees(attendance, invited), len(invited)
        ),
        average_viewed_percentage=metrics.average_viewed_percentage(attendance),
    )


async def get_meeting_analytics_details(
    db: AsyncSession,
    meeting_id: int,
    owner_id: int,
) -> MeetingDetailsAnalytics:
    meeting = await get_owned_meeting(db, meeting_id, owner_id)
    activities = (await _activities_by_meeting(db, [meeting.id])).get(meeting.id, [])
    invited = await _invited_user_ids(db, meeting.id)

    attendance = _reconcile_meeting(meeting, activities)
    if attendance is None:
        return MeetingDetailsAnalytics()

    users = await _user_names(db, [a.user_id for a in activities if a.user_id is not None])
    names = _participant_names(activities, users)

    count = attendance.attendee_count
    avg_duration = round(attendance.total_seconds / count / 60.0) if count else 0

    return MeetingDetailsAnalytics(
        attendance_rate=metrics.attendance_rate(
            _invited_attendees(attendance, invited), len(invited)
        ),
        avg_duration=avg_duration,
        engagement_score=metrics.meeting_engagement_score(attendance),
        attendance_over_time=metrics.attendance_over_time(
            activities_to_events(activities),
            attendance.meeting_start,
            attendance.meeting_end,
        ),
        engagement_distribution=metrics.engagement_distribution(attendance),
        participant_durations=metrics.participant_durations(attendance, names),
        join_time_distribution=metrics.join_time_distribution(attendance),
    )


async def get_view_percentages(
    db: AsyncSession,
    meeting_id: int,
    owner_id: int,
) -> List[ViewPercentageEntry]:
    meeting = await get_owned_meeting(db, meeting_id, owner_id)
    activities = (await _activities_by_meeting(db, [meeting.id])).get(meeting.id, [])

    attendance = _reconcile_meeting(meeting, activities)
    if attendance is None:
        return []

    users = await _user_names(db, [a.user_id for a in activities if a.user_id is not None])
    names = _participant_names(activities, users)

    entries = [
        ViewPercentageEntry(
            user_id=key if isinstance(key, int) else None,
            name=names.get(key) or str(key),
            viewed_percentage=percentage,
        )
        for key, percentage in metrics.viewed_percentages(attendance).items()
    ]
    entries.sort(key=lambda entry: entry.viewed_percentage, reverse=True)
    return entries
