# engagement_crm/services/workflow_dispatcher.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from engagement_crm.core.errors import DownstreamDispatchFailure
from engagement_crm.models.meeting import Meeting
from engagement_crm.schemas.dispatch import DispatchReport, DispatchStatus, RecipientOutcome
from engagement_crm.services.messaging_client import (
    MessagingClient,
    MessagingClientError,
    TemplateKind,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Invitee:
    user_id: int
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None

    @property
    def contact(self) -> Optional[str]:
        return self.phone or self.email

    @property
    def first_name(self) -> str:
        parts = (self.name or "").split()
        return parts[0] if parts else ""


def dedup_key(template_kind: TemplateKind, meeting_id: int, user_id: int) -> str:
    return f"{template_kind.value}:{meeting_id}:{user_id}"


def split_attendance(
    invitees: Iterable[Invitee],
    attended_user_ids: Iterable[int],
) -> tuple[List[Invitee], List[Invitee]]:
    """
    Return (attendees, non_attendees) among the invitees.
    """
    attended = set(attended_user_ids)
    attendees: List[Invitee] = []
    absentees: List[Invitee] = []
    for invitee in invitees:
        (attendees if invitee.user_id in attended else absentees).append(invitee)
    return attendees, absentees


class WorkflowDispatcher:
    """
    Fans out post-meeting messages after a meeting was reconciled.

    Rules
    -----
    - Attendees get one "rate your experience" prompt each.
    - Non-attendees get a "missed meeting" message with the recording link and
      a next-event nudge, but only once a recording exists and the meeting
      does not suppress outreach. Without a recording they are DEFERRED.
    - Each recipient is sent independently with a bounded timeout; a failure
      is recorded in the report and never aborts the other sends.
    - `dispatch` never raises.
    """

    def __init__(
        self,
        client: Optional[MessagingClient],
        timeout_seconds: float = 10.0,
        concurrency: int = 8,
    ) -> None:
        self._client = client
        self._timeout_seconds = timeout_seconds
        self._concurrency = max(concurrency, 1)

    async def dispatch(
        self,
        meeting: Meeting,
        attended_user_ids: Iterable[int],
        invitees: Sequence[Invitee],
        *,
        send_surveys: bool = True,
        send_missed: bool = True,
        next_meeting_start: Optional[datetime] = None,
    ) -> DispatchReport:
        attendees, absentees = split_attendance(invitees, attended_user_ids)
        report = DispatchReport(meeting_id=meeting.id)

        jobs: List[tuple[Invitee, TemplateKind, Dict[str, Any]]] = []

        if send_surveys:
            for invitee in attendees:
                jobs.append(
                    (
                        invitee,
                        TemplateKind.EXPERIENCE_RATING,
                        self._survey_parameters(meeting, invitee),
                    )
                )

        if send_missed and not meeting.suppress_missed_outreach:
            for invitee in absentees:
                if not meeting.has_recording:
                    report.outcomes.append(
                        RecipientOutcome(
                            user_id=invitee.user_id,
                            template_kind=TemplateKind.MISSED_MEETING.value,
                            dedup_key=dedup_key(
                                TemplateKind.MISSED_MEETING, meeting.id, invitee.user_id
                            ),
                            status=DispatchStatus.DEFERRED,
                            error="recording not available yet",
                        )
                    )
                    continue
                jobs.append(
                    (
                        invitee,
                        TemplateKind.MISSED_MEETING,
                        self._missed_parameters(meeting, invitee, next_meeting_start),
                    )
                )

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(job: tuple[Invitee, TemplateKind, Dict[str, Any]]) -> RecipientOutcome:
            async with semaphore:
                return await self._send_one(meeting, *job)

        outcomes = await asyncio.gather(*(_bounded(job) for job in jobs))
        report.outcomes.extend(outcomes)

        logger.info(
            "Dispatch for meeting %s: sent=%d failed=%d skipped=%d deferred=%d",
            meeting.id,
            report.sent,
            report.failed,
            report.skipped,
            report.deferred,
        )
        return report

    async def _send_one(
        self,
        meeting: Meeting,
        invitee: Invitee,
        template_kind: TemplateKind,
        parameters: Dict[str, Any],
    ) -> RecipientOutcome:
        key = dedup_key(template_kind, meeting.id, invitee.user_id)

        def _outcome(status: DispatchStatus, error: Optional[str] = None) -> RecipientOutcome:
            return RecipientOutcome(
                user_id=invitee.user_id,
                template_kind=template_kind.value,
                dedup_key=key,
                status=status,
                error=error,
            )

        if self._client is None:
            return _outcome(DispatchStatus.SKIPPED, "messaging not configured")

        recipient = invitee.contact
        if not recipient:
            return _outcome(DispatchStatus.SKIPPED, "recipient has no phone or email")

        try:
            await self._deliver(recipient, template_kind, key, parameters)
        except DownstreamDispatchFailure as exc:
            return _outcome(DispatchStatus.FAILED, exc.detail)

        return _outcome(DispatchStatus.SENT)

    async def _deliver(
        self,
        recipient: str,
        template_kind: TemplateKind,
        key: str,
        parameters: Dict[str, Any],
    ) -> None:
        """Send one message; every failure surfaces as DownstreamDispatchFailure."""
        try:
            await asyncio.wait_for(
                self._client.send(recipient, template_kind, key, parameters),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Send %s timed out after %.1fs", key, self._timeout_seconds)
            raise DownstreamDispatchFailure("timed out") from exc
        except MessagingClientError as exc:
            logger.warning("Send %s failed: %s", key, exc)
            raise DownstreamDispatchFailure(str(exc)) from exc
        except Exception as exc:  # one recipient must never abort the fan-out
            logger.exception("Unexpected error sending %s", key)
            raise DownstreamDispatchFailure(f"{type(exc).__name__}: {exc}") from exc

    def _survey_parameters(self, meeting: Meeting, invitee: Invitee) -> Dict[str, Any]:
        return {
            "first_name": invitee.first_name,
            "meeting_id": meeting.id,
            "meeting_topic": meeting.topic or "Untitled Meeting",
            "rating_scale": [1, 2, 3, 4, 5],
            "reply_prefix": f"rate:{meeting.id}:",
        }

    def _missed_parameters(
        self,
        meeting: Meeting,
        invitee: Invitee,
        next_meeting_start: Optional[datetime],
    ) -> Dict[str, Any]:
        return {
            "first_name": invitee.first_name,
            "meeting_id": meeting.id,
            "meeting_topic": meeting.topic or "Untitled Meeting",
            "recording_link": meeting.recording_link,
            "recording_password": meeting.recording_password,
            "next_meeting_start": next_meeting_start.isoformat() if next_meeting_start else None,
        }
