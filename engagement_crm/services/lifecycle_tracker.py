# engagement_crm/services/lifecycle_tracker.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Hashable, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_crm.core.config import get_settings
from engagement_crm.core.errors import OrphanedLeaveEvent
from engagement_crm.models.meeting import Meeting
from engagement_crm.models.meeting_activity import MeetingActivity
from engagement_crm.models.meeting_engagement import MeetingEngagement
from engagement_crm.models.user import User
from engagement_crm.schemas.dispatch import DispatchReport
from engagement_crm.schemas.lifecycle import FinalizeResult, OutreachSweepSummary
from engagement_crm.schemas.meeting import MeetingStatus
from engagement_crm.schemas.webhook import (
    LifecycleEvent,
    MeetingEndedEvent,
    MeetingStartedEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    RecordingCompletedEvent,
    UnknownLifecycleEvent,
    WebhookAck,
)
from engagement_crm.services.interval_reconciler import ParticipantEvent, reconcile
from engagement_crm.services.meeting_locks import KeyedLockRegistry, meeting_locks
from engagement_crm.services.messaging_client import get_messaging_client
from engagement_crm.services.workflow_dispatcher import Invitee, WorkflowDispatcher

logger = logging.getLogger(__name__)

DEFAULT_FINALIZE_LEASE = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def activity_user_key(activity: MeetingActivity) -> Hashable:
    """
    Reconciliation key: the matched user id, or the participant identity for
    guests that are not known users.
    """
    if activity.user_id is not None:
        return activity.user_id
    return f"participant:{activity.participant_key}"


def activities_to_events(activities: List[MeetingActivity]) -> List[ParticipantEvent]:
    return [
        ParticipantEvent(
            user_key=activity_user_key(activity),
            join=activity.joining_time,
            leave=activity.leaving_time,
        )
        for activity in activities
    ]


class MeetingLifecycleTracker:
    """
    Event-driven state machine per meeting: NOT_STARTED -> IN_PROGRESS -> ENDED.

    State lives in the `meetings` row, so it survives restarts. Every
    transition is a conditional UPDATE. Finalize claims the meeting with a
    leased UPDATE to ENDED and only counts as done once `notified_at` is
    stamped. Within a process, work for one meeting is additionally
    serialized by a keyed lock.

    Webhook-path rules
    ------------------
    - Unknown meetings and unknown event types are acknowledged and dropped.
    - Participant events are only accepted while IN_PROGRESS.
    - A leave without an open join is logged and discarded.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: WorkflowDispatcher,
        locks: KeyedLockRegistry = meeting_locks,
        finalize_lease: timedelta = DEFAULT_FINALIZE_LEASE,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.locks = locks
        self.finalize_lease = finalize_lease

    async def handle(self, event: LifecycleEvent) -> WebhookAck:
        if isinstance(event, UnknownLifecycleEvent):
            logger.info("Ignoring webhook event %r: %s", event.raw_type, event.reason)
            return WebhookAck(status="ignored", event=event.raw_type, detail=event.reason)

        meeting = await self._find_meeting(event.meeting.id)
        if meeting is None:
            logger.warning(
                "Dropping %s for unknown meeting %s", event.kind, event.meeting.id
            )
            return WebhookAck(
                status="meeting_not_found",
                event=event.kind,
                meeting_id=event.meeting.id,
            )

        if isinstance(event, MeetingStartedEvent):
            return await self.on_started(meeting, event)
        if isinstance(event, ParticipantJoinedEvent):
            return await self.on_participant_joined(meeting, event)
        if isinstance(event, ParticipantLeftEvent):
            try:
                return await self.on_participant_left(meeting, event)
            except OrphanedLeaveEvent as exc:
                logger.info("Discarding leave event: %s", exc.detail)
                return WebhookAck(
                    status="orphaned_leave",
                    event=event.kind,
                    meeting_id=event.meeting.id,
                    detail=exc.detail,
                )
        if isinstance(event, MeetingEndedEvent):
            return await self.on_ended(meeting, event)
        if isinstance(event, RecordingCompletedEvent):
            return await self.on_recording_completed(meeting, event)

        return WebhookAck(status="ignored", event=event.kind)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def on_started(self, meeting: Meeting, event: MeetingStartedEvent) -> WebhookAck:
        started_at = event.meeting.start_time or event.occurred_at
        result = await self.db.execute(
            update(Meeting)
            .where(
                Meeting.id == meeting.id,
                Meeting.status == MeetingStatus.NOT_STARTED.value,
            )
            .values(status=MeetingStatus.IN_PROGRESS.value, actual_start=started_at)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount != 1:
            logger.info("Duplicate start for meeting %s ignored", meeting.id)
            return WebhookAck(
                status="already_started",
                event=event.kind,
                meeting_id=event.meeting.id,
            )

        logger.info("Meeting %s started at %s", meeting.id, started_at.isoformat())
        return WebhookAck(status="meeting_started", event=event.kind, meeting_id=event.meeting.id)

    async def on_participant_joined(
        self,
        meeting: Meeting,
        event: ParticipantJoinedEvent,
    ) -> WebhookAck:
        ack = self._reject_unless_in_progress(meeting, event.kind, event.meeting.id)
        if ack is not None:
            return ack

        participant = event.participant
        key = participant.participant_key

        open_activity = await self._latest_open_activity(meeting.id, key)
        if open_activity is not None:
            logger.info(
                "Participant %s already has an open join in meeting %s; ignoring",
                key,
                meeting.id,
            )
            return WebhookAck(
                status="duplicate_join",
                event=event.kind,
                meeting_id=event.meeting.id,
            )

        user_id = await self._match_user_id(participant.email)
        self.db.add(
            MeetingActivity(
                meeting_id=meeting.id,
                user_id=user_id,
                participant_key=key,
                participant_email=participant.email,
                participant_name=participant.user_name,
                joining_time=event.join_time,
            )
        )
        await self.db.commit()

        logger.info("Participant %s joined meeting %s", key, meeting.id)
        return WebhookAck(status="participant_joined", event=event.kind, meeting_id=event.meeting.id)

    async def on_participant_left(
        self,
        meeting: Meeting,
        event: ParticipantLeftEvent,
    ) -> WebhookAck:
        """Close the open join; raises OrphanedLeaveEvent when there is none."""
        ack = self._reject_unless_in_progress(meeting, event.kind, event.meeting.id)
        if ack is not None:
            return ack

        key = event.participant.participant_key
        open_activity = await self._latest_open_activity(meeting.id, key)
        if open_activity is None:
            raise OrphanedLeaveEvent(
                f"no open join for participant {key} in meeting {meeting.id}"
            )

        open_activity.leaving_time = event.leave_time
        await self.db.commit()

        logger.info("Participant %s left meeting %s", key, meeting.id)
        return WebhookAck(status="participant_left", event=event.kind, meeting_id=event.meeting.id)

    async def on_ended(self, meeting: Meeting, event: MeetingEndedEvent) -> WebhookAck:
        result = await self.finalize(
            meeting.id,
            ended_at=event.meeting.end_time or event.occurred_at,
            started_at=event.meeting.start_time,
        )
        if not result.finalized:
            return WebhookAck(
                status="already_finalized",
                event=event.kind,
                meeting_id=event.meeting.id,
                detail=result.detail,
            )
        return WebhookAck(status="meeting_ended", event=event.kind, meeting_id=event.meeting.id)

    async def on_recording_completed(
        self,
        meeting: Meeting,
        event: RecordingCompletedEvent,
    ) -> WebhookAck:
        await self.db.execute(
            update(Meeting)
            .where(Meeting.id == meeting.id)
            .values(recording_link=event.share_url, recording_password=event.password)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(meeting)

        logger.info("Recording available for meeting %s", meeting.id)

        if meeting.status == MeetingStatus.ENDED.value:
            await self.dispatch_missed_outreach(meeting.id)

        return WebhookAck(status="recording_stored", event=event.kind, meeting_id=event.meeting.id)

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    async def finalize(
        self,
        meeting_id: int,
        *,
        ended_at: Optional[datetime] = None,
        started_at: Optional[datetime] = None,
    ) -> FinalizeResult:
        """
        Finalize a meeting at most once.

        Steps
        -----
        0) Claim: conditional UPDATE status -> ENDED that also takes the
           `finalizing_at` lease. The claim is lost once `notified_at` is
           stamped, or while another worker holds a fresh lease.
        1) Reconcile raw activities into per-user attended time.
        2) Persist `attended = true` on the matching invitations.
        3) Dispatch post-meeting messages (best effort).
        4) Stamp `notified_at`.

        If steps 1-4 raise, the lease is released so a replayed `ended`
        delivery or a manual finalize can finish the meeting. Every step
        after the claim is safe to repeat.
        """
        async with self.locks.hold(meeting_id):
            meeting = await self.db.get(Meeting, meeting_id, populate_existing=True)
            if meeting is None:
                return FinalizeResult(meeting_id=meeting_id, finalized=False, detail="meeting not found")

            claimed_at = _utcnow()
            actual_start = meeting.actual_start or started_at or meeting.scheduled_start
            actual_end = meeting.actual_end or ended_at or claimed_at

            claim = await self.db.execute(
                update(Meeting)
                .where(
                    Meeting.id == meeting_id,
                    Meeting.notified_at.is_(None),
                    or_(
                        Meeting.status != MeetingStatus.ENDED.value,
                        Meeting.finalizing_at.is_(None),
                        Meeting.finalizing_at < claimed_at - self.finalize_lease,
                    ),
                )
                .values(
                    status=MeetingStatus.ENDED.value,
                    actual_start=actual_start,
                    actual_end=actual_end,
                    finalizing_at=claimed_at,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

            if claim.rowcount != 1:
                if meeting.notified_at is None:
                    detail = "meeting finalize in progress"
                else:
                    detail = "meeting already finalized"
                logger.info("Meeting %s not finalized by this delivery: %s", meeting_id, detail)
                return FinalizeResult(meeting_id=meeting_id, finalized=False, detail=detail)

            if meeting.status == MeetingStatus.ENDED.value:
                logger.info("Resuming interrupted finalize of meeting %s", meeting_id)

            try:
                return await self._complete_finalize(meeting)
            except Exception:
                logger.warning(
                    "Finalize of meeting %s failed; releasing claim for a replay", meeting_id
                )
                await self._release_finalize_claim(meeting_id, claimed_at)
                raise

    async def _complete_finalize(self, meeting: Meeting) -> FinalizeResult:
        meeting_id = meeting.id
        await self.db.refresh(meeting)

        activities = await self._activities(meeting_id)
        attendance = reconcile(
            meeting.actual_start,
            meeting.actual_end,
            activities_to_events(activities),
        )
        attended_user_ids = sorted(
            key for key in attendance.durations if isinstance(key, int)
        )

        if attended_user_ids:
            await self.db.execute(
                update(MeetingEngagement)
                .where(
                    MeetingEngagement.meeting_id == meeting_id,
                    MeetingEngagement.user_id.in_(attended_user_ids),
                )
                .values(attended=True)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

        # Without a recording the dispatcher defers non-attendees.
        send_missed = True
        if meeting.has_recording:
            send_missed = await self._claim_missed_outreach(meeting_id)
        try:
            report = await self.dispatcher.dispatch(
                meeting,
                attended_user_ids,
                await self._invitees(meeting_id),
                send_missed=send_missed,
                next_meeting_start=await self._next_meeting_start(meeting),
            )
        except Exception:
            if meeting.has_recording and send_missed:
                await self._release_missed_outreach(meeting_id)
            raise

        await self.db.execute(
            update(Meeting)
            .where(Meeting.id == meeting_id)
            .values(notified_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info(
            "Finalized meeting %s: %d participants, %d invited attendees",
            meeting_id,
            attendance.attendee_count,
            len(attended_user_ids),
        )
        return FinalizeResult(
            meeting_id=meeting_id,
            finalized=True,
            attended_user_ids=attended_user_ids,
            participant_count=attendance.attendee_count,
            dispatch=report,
        )

    async def dispatch_missed_outreach(self, meeting_id: int) -> Optional[DispatchReport]:
        """
        Send "missed meeting" messages for a finalized meeting with a
        recording, at most once per meeting.

        The meeting counts as finalized only once `notified_at` is stamped,
        so the attended flags it reads are complete.

        Returns None when the meeting is not eligible or another caller
        already claimed the outreach.
        """
        async with self.locks.hold(meeting_id):
            meeting = await self.db.get(Meeting, meeting_id, populate_existing=True)
            if (
                meeting is None
                or meeting.status != MeetingStatus.ENDED.value
                or meeting.notified_at is None
                or not meeting.has_recording
                or meeting.suppress_missed_outreach
            ):
                return None

            if not await self._claim_missed_outreach(meeting_id):
                return None

            attended = await self.db.execute(
                select(MeetingEngagement.user_id).where(
                    MeetingEngagement.meeting_id == meeting_id,
                    MeetingEngagement.attended.is_(True),
                )
            )
            return await self.dispatcher.dispatch(
                meeting,
                list(attended.scalars().all()),
                await self._invitees(meeting_id),
                send_surveys=False,
                next_meeting_start=await self._next_meeting_start(meeting),
            )

    async def run_missed_outreach_sweep(self) -> OutreachSweepSummary:
        """
        Catch-up pass for finalized meetings whose recording arrived but
        whose missed-meeting messages were never sent.
        """
        result = await self.db.execute(
            select(Meeting.id)
            .where(
                Meeting.status == MeetingStatus.ENDED.value,
                Meeting.recording_link.is_not(None),
                Meeting.notified_at.is_not(None),
                Meeting.recording_notified_at.is_(None),
                Meeting.suppress_missed_outreach.is_(False),
            )
            .order_by(Meeting.id)
        )
        meeting_ids = list(result.scalars().all())

        reports: List[DispatchReport] = []
        for meeting_id in meeting_ids:
            report = await self.dispatch_missed_outreach(meeting_id)
            if report is not None:
                reports.append(report)

        logger.info(
            "Missed-meeting sweep: %d candidates, %d dispatched",
            len(meeting_ids),
            len(reports),
        )
        return OutreachSweepSummary(
            meetings_checked=len(meeting_ids),
            meetings_dispatched=len(reports),
            reports=reports,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_participants(self, external_meeting_id: str) -> Optional[List[MeetingActivity]]:
        meeting = await self._find_meeting(external_meeting_id)
        if meeting is None:
            return None
        return await self._activities(meeting.id)

    async def _find_meeting(self, external_meeting_id: str) -> Optional[Meeting]:
        result = await self.db.execute(
            select(Meeting).where(Meeting.external_meeting_id == str(external_meeting_id))
        )
        return result.scalar_one_or_none()

    async def _latest_open_activity(
        self,
        meeting_id: int,
        participant_key: str,
    ) -> Optional[MeetingActivity]:
        result = await self.db.execute(
            select(MeetingActivity)
            .where(
                MeetingActivity.meeting_id == meeting_id,
                MeetingActivity.participant_key == participant_key,
                MeetingActivity.leaving_time.is_(None),
            )
            .order_by(MeetingActivity.joining_time.desc(), MeetingActivity.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _match_user_id(self, email: Optional[str]) -> Optional[int]:
        if not email:
            return None
        result = await self.db.execute(
            select(User.id).where(func.lower(User.email) == email.lower()).limit(1)
        )
        return result.scalar_one_or_none()

    async def _activities(self, meeting_id: int) -> List[MeetingActivity]:
        result = await self.db.execute(
            select(MeetingActivity)
            .where(MeetingActivity.meeting_id == meeting_id)
            .order_by(MeetingActivity.joining_time, MeetingActivity.id)
        )
        return list(result.scalars().all())

    async def _invitees(self, meeting_id: int) -> List[Invitee]:
        result = await self.db.execute(
            select(User)
            .join(MeetingEngagement, MeetingEngagement.user_id == User.id)
            .where(MeetingEngagement.meeting_id == meeting_id)
            .order_by(User.id)
        )
        return [
            Invitee(user_id=user.id, name=user.name or "", phone=user.phone, email=user.email)
            for user in result.scalars().all()
        ]

    async def _next_meeting_start(self, meeting: Meeting) -> Optional[datetime]:
        after = meeting.actual_end or meeting.scheduled_start
        result = await self.db.execute(
            select(func.min(Meeting.scheduled_start)).where(
                Meeting.owner_id == meeting.owner_id,
                Meeting.id != meeting.id,
                Meeting.status == MeetingStatus.NOT_STARTED.value,
                Meeting.scheduled_start > after,
            )
        )
        value = result.scalar_one_or_none()
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    async def _claim_missed_outreach(self, meeting_id: int) -> bool:
        claim = await self.db.execute(
            update(Meeting)
            .where(
                Meeting.id == meeting_id,
                Meeting.recording_notified_at.is_(None),
                Meeting.suppress_missed_outreach.is_(False),
            )
            .values(recording_notified_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return claim.rowcount == 1

    async def _release_missed_outreach(self, meeting_id: int) -> None:
        await self.db.rollback()
        await self.db.execute(
            update(Meeting)
            .where(Meeting.id == meeting_id)
            .values(recording_notified_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _release_finalize_claim(self, meeting_id: int, claimed_at: datetime) -> None:
        await self.db.rollback()
        await self.db.execute(
            update(Meeting)
            .where(
                Meeting.id == meeting_id,
                Meeting.notified_at.is_(None),
                Meeting.finalizing_at == claimed_at,
            )
            .values(finalizing_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    def _reject_unless_in_progress(
        self,
        meeting: Meeting,
        kind: str,
        external_id: str,
    ) -> Optional[WebhookAck]:
        if meeting.status == MeetingStatus.IN_PROGRESS.value:
            return None
        logger.info(
            "Discarding %s for meeting %s in state %s", kind, meeting.id, meeting.status
        )
        return WebhookAck(
            status="not_in_progress",
            event=kind,
            meeting_id=external_id,
            detail=f"meeting is {meeting.status}",
        )


def build_tracker(db: AsyncSession) -> MeetingLifecycleTracker:
    settings = get_settings()
    dispatcher = WorkflowDispatcher(
        client=get_messaging_client(),
        timeout_seconds=settings.MESSAGING_TIMEOUT_SECONDS,
        concurrency=settings.DISPATCH_CONCURRENCY,
    )
    return MeetingLifecycleTracker(
        db,
        dispatcher,
        finalize_lease=timedelta(seconds=settings.FINALIZE_LEASE_SECONDS),
    )
