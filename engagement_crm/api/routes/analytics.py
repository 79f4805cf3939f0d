# engagement_crm/api/routes/analytics.py
from datetime import date as date_type
from http import HTTPStatus

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_crm.api.dependencies.owner import get_owner_id
from engagement_crm.core.errors import EngagementError
from engagement_crm.db.session import get_db
from engagement_crm.schemas.analytics import (
    ActivityAnalytics,
    AiInsights,
    EngagementTrendPoint,
    LeaderboardEntry,
    MeetingDetailsAnalytics,
    MeetingsStats,
    ViewPercentageEntry,
)
from engagement_crm.services import analytics

router = APIRouter(
    prefix="/analytics",
    tags=["Analytics"],
)

MEETING_ERRORS = {
    403: {
        "description": "Meeting belongs to another organizer.",
        "content": {
            "application/json": {
                "example": {"error": {"kind": "forbidden", "detail": "meeting 7 belongs to another organizer"}}
            }
        },
    },
    404: {
        "description": "Meeting not found.",
        "content": {
            "application/json": {
                "example": {"error": {"kind": "not_found", "detail": "meeting 7 not found"}}
            }
        },
    },
}


class InvalidDateRange(EngagementError):
    kind = "invalid_date_range"
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY


class DateRange:
    """
    Optional inclusive window on meeting start shared by organizer-level
    endpoints.
    """

    def __init__(
        self,
        start_date: date_type | None = Query(
            default=None,
            description="First day (inclusive) of the window, YYYY-MM-DD.",
            examples=["2026-01-01"],
        ),
        end_date: date_type | None = Query(
            default=None,
            description="Last day (inclusive) of the window, YYYY-MM-DD.",
            examples=["2026-01-31"],
        ),
    ) -> None:
        if start_date and end_date and end_date < start_date:
            raise InvalidDateRange("end_date must be greater than or equal to start_date")
        self.start_date = start_date
        self.end_date = end_date


@router.get(
    "/meetings-stats",
    response_model=MeetingsStats,
    response_model_by_alias=True,
    status_code=HTTPStatus.OK,
    summary="Organizer overview: members, meetings, engagement rate, durations, timeline",
    description=(
        "- `avg_engagement_rate` = attended invitations / all invitations * 100.\n"
        "- `duration_breakdown` buckets meetings by wall-clock minutes; meetings "
        "without any end are excluded.\n"
        "- `timeline` is dense: one entry per day, defaulting to 14 days before "
        "today through tomorrow."
    ),
)
async def meetings_stats(
    window: DateRange = Depends(),
    owner_id: int = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> MeetingsStats:
    return await analytics.get_meetings_stats(db, owner_id, window.start_date, window.end_date)


@router.get(
    "/ai-insights",
    response_model=AiInsights,
    status_code=HTTPStatus.OK,
    summary="Generated community insights and recommendations",
    description="Returns empty lists whenever generation fails or is not configured.",
)
async def ai_insights(
    window: DateRange = Depends(),
    owner_id: int = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> AiInsights:
    return await analytics.get_ai_insights(db, owner_id, window.start_date, window.end_date)


@router.get(
    "/engagement-leaderboard",
    response_model=list[LeaderboardEntry],
    status_code=HTTPStatus.OK,
    summary="Top users by cross-meeting engagement score",
)
async def engagement_leaderboard(
    window: DateRange = Depends(),
    limit: int | None = Query(default=None, ge=1, le=100),
    owner_id: int = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> list[LeaderboardEntry]:
    return await analytics.get_engagement_leaderboard(
        db,
        owner_id,
        window.start_date,
        window.end_date,
        top_n=limit,
    )


@router.get(
    "/engagement-trend",
    response_model=list[EngagementTrendPoint],
    status_code=HTTPStatus.OK,
    summary="Per-meeting attendance and viewed percentage over time",
)
async def engagement_trend(
    window: DateRange = Depends(),
    owner_id: int = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> list[EngagementTrendPoint]:
    return await analytics.get_engagement_trend(db, owner_id, window.start_date, window.end_date)


@router.get(
    "/meeting/{meeting_id}",
    response_model=ActivityAnalytics,
    status_code=HTTPStatus.OK,
    summary="Attendance rate and average viewed percentage for one meeting",
    responses=MEETING_ERRORS,
)
async def meeting_activity(
    meeting_id: int,
    owner_id: int = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ActivityAnalytics:
    return await analytics.get_activity_analytics(db, meeting_id, owner_id)


@router.get(
    "/meeting/{meeting_id}/details",
    response_model=MeetingDetailsAnalytics,
    status_code=HTTPStatus.OK,
    summary="Detailed attendance analytics for one meeting",
    responses=MEETING_ERRORS,
)
async def meeting_details(
    meeting_id: int,
    owner_id: int = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> MeetingDetailsAnalytics:
    return await analytics.get_meeting_analytics_details(db, meeting_id, owner_id)


@router.get(
    "/meeting/{meeting_id}/view-percentage",
    response_model=list[ViewPercentageEntry],
    status_code=HTTPStatus.OK,
    summary="Viewed percentage per participant for one meeting",
    responses=MEETING_ERRORS,
)
async def meeting_view_percentage(
    meeting_id: int,
    owner_id: int = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> list[ViewPercentageEntry]:
    return await analytics.get_view_percentages(db, meeting_id, owner_id)
