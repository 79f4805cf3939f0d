# engagement_crm/schemas/dispatch.py
from enum import Enum

from pydantic import BaseModel, Field


class DispatchStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    DEFERRED = "DEFERRED"


class RecipientOutcome(BaseModel):
    """
    Result of one outbound message attempt.
    """

    user_id: int = Field(..., examples=[12])
    template_kind: str = Field(..., examples=["experience_rating"])
    dedup_key: str = Field(..., examples=["experience_rating:7:12"])
    status: DispatchStatus
    error: str | None = Field(
        None,
        description="Failure or skip reason; null when the message was sent.",
        examples=["recipient has no phone or email"],
    )


class DispatchReport(BaseModel):
    """
    Collected outcomes of a post-meeting fan-out. Failures are recorded here
    rather than raised.
    """

    meeting_id: int
    outcomes: list[RecipientOutcome] = Field(default_factory=list)

    def count(self, status: DispatchStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def sent(self) -> int:
        return self.count(DispatchStatus.SENT)

    @property
    def failed(self) -> int:
        return self.count(DispatchStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(DispatchStatus.SKIPPED)

    @property
    def deferred(self) -> int:
        return self.count(DispatchStatus.DEFERRED)
