# engagement_crm/schemas/webhook.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MeetingObject(BaseModel):
    """
    The `payload.object` block shared by all meeting lifecycle events.

    The provider sends numeric meeting ids; they are kept as strings.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    uuid: str | None = None
    host_id: str | None = None
    topic: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        if value is None or value == "":
            raise ValueError("meeting id is required")
        return str(value)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def blank_times(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def normalize_times(cls, value: datetime | None) -> datetime | None:
        return _to_utc(value)


class ParticipantObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    participant_uuid: str | None = None
    user_id: str | None = None
    user_name: str | None = None
    email: str | None = None
    join_time: datetime | None = None
    leave_time: datetime | None = None

    @field_validator("id", "participant_uuid", "user_id", mode="before")
    @classmethod
    def coerce_str(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> str | None:
        if not value:
            return None
        return str(value).strip().lower()

    @field_validator("join_time", "leave_time", mode="before")
    @classmethod
    def blank_times(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("join_time", "leave_time", mode="after")
    @classmethod
    def normalize_times(cls, value: datetime | None) -> datetime | None:
        return _to_utc(value)

    @model_validator(mode="after")
    def require_identity(self) -> "ParticipantObject":
        if not self.participant_key:
            raise ValueError("participant has no usable identity")
        return self

    @property
    def participant_key(self) -> str | None:
        """
        Identity used to pair a leave event with its join.

        Per-session ids come first so two devices of the same person are
        tracked as separate joins; email is the last resort.
        """
        return self.participant_uuid or self.user_id or self.id or self.email


class RecordingObject(MeetingObject):
    share_url: str | None = None
    password: str | None = None
    recording_play_passcode: str | None = None


# ---------------------------------------------------------------------------
# Closed variant set produced at the ingestion boundary
# ---------------------------------------------------------------------------


class MeetingStartedEvent(BaseModel):
    kind: Literal["meeting.started"] = "meeting.started"
    meeting: MeetingObject
    occurred_at: datetime


class MeetingEndedEvent(BaseModel):
    kind: Literal["meeting.ended"] = "meeting.ended"
    meeting: MeetingObject
    occurred_at: datetime


class ParticipantJoinedEvent(BaseModel):
    kind: Literal["meeting.participant_joined"] = "meeting.participant_joined"
    meeting: MeetingObject
    participant: ParticipantObject
    join_time: datetime


class ParticipantLeftEvent(BaseModel):
    kind: Literal["meeting.participant_left"] = "meeting.participant_left"
    meeting: MeetingObject
    participant: ParticipantObject
    leave_time: datetime


class RecordingCompletedEvent(BaseModel):
    kind: Literal["recording.completed"] = "recording.completed"
    meeting: RecordingObject
    share_url: str
    password: str | None = None


class UnknownLifecycleEvent(BaseModel):
    """
    Anything the ingestion boundary could not map onto a known variant:
    new provider event types as well as known types with invalid payloads.
    """

    kind: Literal["unknown"] = "unknown"
    raw_type: str
    reason: str = "unrecognized event type"


LifecycleEvent = Union[
    MeetingStartedEvent,
    MeetingEndedEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    RecordingCompletedEvent,
    UnknownLifecycleEvent,
]


class UrlValidationResponse(BaseModel):
    plainToken: str = Field(..., description="Token sent by the provider.")
    encryptedToken: str = Field(
        ...,
        description="Hex HMAC-SHA256 of the plain token keyed with the webhook secret.",
    )


class WebhookAck(BaseModel):
    """
    Acknowledgement body returned for every authenticated lifecycle delivery.
    """

    status: str = Field(..., examples=["participant_joined"])
    event: str = Field(..., examples=["meeting.participant_joined"])
    meeting_id: str | None = Field(None, examples=["85367388662"])
    detail: str | None = Field(None, examples=["duplicate ended event ignored"])
