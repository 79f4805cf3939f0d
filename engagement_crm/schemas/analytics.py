# engagement_crm/schemas/analytics.py
import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class DurationBreakdown(BaseModel):
    """
    Number of meetings per wall-clock duration bucket (minutes).

    Bucket upper bounds are inclusive: a 15-minute meeting lands in `0-15`.
    """

    model_config = ConfigDict(populate_by_name=True)

    up_to_15: int = Field(0, alias="0-15")
    up_to_30: int = Field(0, alias="15-30")
    up_to_45: int = Field(0, alias="30-45")
    up_to_60: int = Field(0, alias="45-60")
    over_60: int = Field(0, alias="60+")


class TimelinePoint(BaseModel):
    date: dt.date = Field(..., examples=["2026-01-08"])
    count: int = Field(..., examples=[2])


class MeetingsStats(BaseModel):
    """
    Organizer-level overview returned by /analytics/meetings-stats.
    """

    total_members: int = Field(..., description="Users created by the organizer.", examples=[42])
    total_meetings: int = Field(..., examples=[12])
    avg_engagement_rate: float = Field(
        ...,
        description="Attended invitations / all invitations * 100, rounded to 2 decimals.",
        examples=[63.5],
    )
    duration_breakdown: DurationBreakdown
    timeline: list[TimelinePoint]


class AiInsights(BaseModel):
    community_insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class ActivityAnalytics(BaseModel):
    attendance_rate: float = Field(..., examples=[50.0])
    average_viewed_percentage: float = Field(..., examples=[75.0])


class AttendanceSample(BaseModel):
    time: str = Field(..., description="Offset from meeting start, e.g. '15m'.", examples=["15m"])
    count: int = Field(..., description="Participants present at that instant.", examples=[7])


class EngagementBucket(BaseModel):
    name: str = Field(..., examples=["High Engagement"])
    value: int = Field(..., examples=[4])
    color: str = Field(..., examples=["#22c55e"])


class ParticipantDuration(BaseModel):
    name: str = Field(..., examples=["John Doe"])
    duration: int = Field(..., description="Attended minutes, rounded.", examples=[45])


class JoinTimeBucket(BaseModel):
    time: int = Field(..., description="Bucket start in minutes after meeting start.", examples=[5])
    count: int = Field(..., examples=[3])


class MeetingDetailsAnalytics(BaseModel):
    attendance_rate: float = 0.0
    avg_duration: int = Field(0, description="Average attended minutes per attendee.")
    engagement_score: int = Field(
        0,
        description="Average attended duration relative to meeting duration, percent.",
    )
    attendance_over_time: list[AttendanceSample] = Field(default_factory=list)
    engagement_distribution: list[EngagementBucket] = Field(default_factory=list)
    participant_durations: list[ParticipantDuration] = Field(default_factory=list)
    join_time_distribution: list[JoinTimeBucket] = Field(default_factory=list)


class ViewPercentageEntry(BaseModel):
    user_id: int | None = None
    name: str
    viewed_percentage: float = Field(..., examples=[75.0])


class LeaderboardEntry(BaseModel):
    user_id: int
    user_name: str
    engagement_score: float = Field(..., examples=[87.5])
    total_meetings_attended: int = Field(..., examples=[4])


class EngagementTrendPoint(BaseModel):
    meeting_id: int
    date: dt.date
    attendance_rate: float
    average_viewed_percentage: float
    attendees: int
    invited: int
