# engagement_crm/schemas/lifecycle.py
from pydantic import BaseModel, Field

from engagement_crm.schemas.dispatch import DispatchReport


class FinalizeResult(BaseModel):
    """
    Outcome of finalizing a meeting (reconcile, persist attendance, dispatch).

    `finalized` is False when another delivery already finalized the meeting;
    nothing was recomputed or sent in that case.
    """

    meeting_id: int = Field(..., examples=[7])
    finalized: bool = Field(..., examples=[True])
    attended_user_ids: list[int] = Field(default_factory=list, examples=[[12, 15]])
    participant_count: int = Field(
        0,
        description="Distinct participants with positive attended time, including unmatched guests.",
        examples=[3],
    )
    dispatch: DispatchReport | None = None
    detail: str | None = Field(None, examples=["meeting already finalized"])


class OutreachSweepSummary(BaseModel):
    """
    Result of one missed-meeting outreach sweep over finalized meetings.
    """

    meetings_checked: int = Field(..., examples=[3])
    meetings_dispatched: int = Field(..., examples=[1])
    reports: list[DispatchReport] = Field(default_factory=list)
