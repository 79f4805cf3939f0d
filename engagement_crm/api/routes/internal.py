# engagement_crm/api/routes/internal.py
from http import HTTPStatus

from fastapi import APIRouter, Depends

from engagement_crm.api.dependencies.internal_auth import verify_internal_api_key
from engagement_crm.api.routes.webhooks import get_tracker
from engagement_crm.core.errors import NotFound
from engagement_crm.schemas.lifecycle import FinalizeResult, OutreachSweepSummary
from engagement_crm.services.lifecycle_tracker import MeetingLifecycleTracker

router = APIRouter(
    prefix="/internal",
    tags=["Internal"],
    dependencies=[Depends(verify_internal_api_key)],
)


@router.post(
    "/meetings/{meeting_id}/finalize",
    response_model=FinalizeResult,
    status_code=HTTPStatus.OK,
    summary="Finalize a meeting manually",
    description=(
        "Runs the same finalize step as the `meeting.ended` webhook: "
        "reconcile attendance, persist `attended` flags, dispatch post-meeting "
        "messages and stamp `notified_at`.\n\n"
        "Idempotent: for an already finalized meeting `finalized` is false and "
        "nothing is recomputed or sent.\n\n"
        "Useful when the provider's `ended` delivery was lost."
    ),
    responses={
        200: {
            "description": "Finalize executed (or skipped as a replay).",
            "content": {
                "application/json": {
                    "example": {
                        "meeting_id": 7,
                        "finalized": True,
                        "attended_user_ids": [12, 15],
                        "participant_count": 3,
                        "dispatch": {
                            "meeting_id": 7,
                            "outcomes": [
                                {
                                    "user_id": 12,
                                    "template_kind": "experience_rating",
                                    "dedup_key": "experience_rating:7:12",
                                    "status": "SENT",
                                    "error": None,
                                }
                            ],
                        },
                        "detail": None,
                    }
                }
            },
        },
        401: {"description": "Missing or invalid internal API key (if configured)."},
        404: {"description": "Meeting not found."},
    },
)
async def finalize_meeting(
    meeting_id: int,
    tracker: MeetingLifecycleTracker = Depends(get_tracker),
) -> FinalizeResult:
    result = await tracker.finalize(meeting_id)
    if not result.finalized and result.detail == "meeting not found":
        raise NotFound(f"meeting {meeting_id} not found")
    return result


@router.post(
    "/run-missed-meeting-outreach",
    response_model=OutreachSweepSummary,
    status_code=HTTPStatus.OK,
    summary="Send pending missed-meeting messages",
    description=(
        "Internal-only endpoint intended for scheduled/cron usage.\n\n"
        "Picks finalized meetings that have a recording but no "
        "`recording_notified_at`, and sends the missed-meeting message to "
        "every invitee who did not attend. Each meeting is claimed once."
    ),
    responses={
        401: {"description": "Missing or invalid internal API key (if configured)."},
    },
)
async def run_missed_meeting_outreach(
    tracker: MeetingLifecycleTracker = Depends(get_tracker),
) -> OutreachSweepSummary:
    return await tracker.run_missed_outreach_sweep()
