# engagement_crm/services/webhook_events.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import ValidationError

from engagement_crm.core.errors import UnknownEvent
from engagement_crm.schemas.webhook import (
    LifecycleEvent,
    MeetingEndedEvent,
    MeetingObject,
    MeetingStartedEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    ParticipantObject,
    RecordingCompletedEvent,
    RecordingObject,
    UnknownLifecycleEvent,
)

URL_VALIDATION_EVENT = "endpoint.url_validation"


def parse_lifecycle_event(body: Mapping[str, Any]) -> LifecycleEvent:
    """
    Map a raw provider delivery onto the closed lifecycle variant set.

    Anything that is not a known event type, or a known type whose payload
    fails validation, becomes an `UnknownLifecycleEvent` instead of raising.
    """
    raw_type = str(body.get("event") or "")
    try:
        return _parse(raw_type, body)
    except UnknownEvent as exc:
        return UnknownLifecycleEvent(raw_type=raw_type, reason=exc.detail)


def _parse(raw_type: str, body: Mapping[str, Any]) -> LifecycleEvent:
    payload = body.get("payload")
    obj = payload.get("object") if isinstance(payload, Mapping) else None

    if not isinstance(obj, Mapping):
        raise UnknownEvent("payload.object missing")

    occurred_at = _event_timestamp(body.get("event_ts"))

    try:
        if raw_type == "meeting.started":
            return MeetingStartedEvent(
                meeting=MeetingObject.model_validate(obj),
                occurred_at=occurred_at,
            )

        if raw_type == "meeting.ended":
            return MeetingEndedEvent(
                meeting=MeetingObject.model_validate(obj),
                occurred_at=occurred_at,
            )

        if raw_type == "meeting.participant_joined":
            participant = _participant(obj)
            return ParticipantJoinedEvent(
                meeting=MeetingObject.model_validate(obj),
                participant=participant,
                join_time=participant.join_time or occurred_at,
            )

        if raw_type == "meeting.participant_left":
            participant = _participant(obj)
            return ParticipantLeftEvent(
                meeting=MeetingObject.model_validate(obj),
                participant=participant,
                leave_time=participant.leave_time or occurred_at,
            )

        if raw_type == "recording.completed":
            recording = RecordingObject.model_validate(obj)
            if not recording.share_url:
                raise UnknownEvent("recording has no share_url")
            return RecordingCompletedEvent(
                meeting=recording,
                share_url=recording.share_url,
                password=recording.recording_play_passcode or recording.password,
            )
    except (ValidationError, ValueError) as exc:
        raise UnknownEvent(f"invalid payload: {exc}") from exc

    raise UnknownEvent("unrecognized event type")


def _participant(obj: Mapping[str, Any]) -> ParticipantObject:
    raw = obj.get("participant")
    if not isinstance(raw, Mapping):
        raise UnknownEvent("invalid payload: participant block missing")
    return ParticipantObject.model_validate(raw)


def _event_timestamp(value: Any) -> datetime:
    """
    `event_ts` is epoch milliseconds; fall back to now when absent.
    """
    try:
        millis = float(value)
    except (TypeError, ValueError):
        return datetime.now(tz=timezone.utc)
    try:
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return datetime.now(tz=timezone.utc)
