# engagement_crm/schemas/meeting.py
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MeetingStatus(str, Enum):
    """
    Lifecycle state of a meeting as observed through provider webhooks.
    """

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    ENDED = "ENDED"


class InterestStatus(str, Enum):
    YES = "yes"
    NO = "no"
    MAYBE = "maybe"
    NO_RESPONSE = "no-response"


class ParticipantRead(BaseModel):
    """
    Public representation of a tracked raw attendance event.
    """

    model_config = ConfigDict(from_attributes=True)

    participant_key: str = Field(
        ...,
        description="Provider participant identity (email when available).",
        examples=["john@example.com"],
    )
    user_id: int | None = Field(
        None,
        description="Matched user id, or null when the participant is not a known user.",
        examples=[12],
    )
    participant_name: str | None = Field(None, examples=["John Doe"])
    joining_time: datetime = Field(..., examples=["2026-01-08T10:05:00Z"])
    leaving_time: datetime | None = Field(
        None,
        description="Null while the participant is still in the meeting.",
        examples=["2026-01-08T10:50:00Z"],
    )
