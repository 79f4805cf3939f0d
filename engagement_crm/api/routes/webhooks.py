# engagement_crm/api/routes/webhooks.py
import json
import logging
from datetime import timedelta
from http import HTTPStatus
from typing import Any, Mapping

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_crm.core.config import get_settings
from engagement_crm.core.errors import AuthenticationFailure, Forbidden, NotFound
from engagement_crm.db.session import get_db
from engagement_crm.schemas.meeting import ParticipantRead
from engagement_crm.schemas.messaging import MessagingWebhookAck, MessagingWebhookPayload
from engagement_crm.schemas.webhook import UrlValidationResponse, WebhookAck
from engagement_crm.services.lifecycle_tracker import MeetingLifecycleTracker, build_tracker
from engagement_crm.services.survey_replies import process_messaging_webhook
from engagement_crm.services.webhook_auth import (
    Rejected,
    authenticate,
    build_url_validation_response,
)
from engagement_crm.services.webhook_events import URL_VALIDATION_EVENT, parse_lifecycle_event

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-zm-signature"
TIMESTAMP_HEADER = "x-zm-request-timestamp"

router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"],
)


async def get_tracker(db: AsyncSession = Depends(get_db)) -> MeetingLifecycleTracker:
    return build_tracker(db)


def _secret() -> bytes:
    return (get_settings().ZOOM_WEBHOOK_SECRET_TOKEN or "").encode("utf-8")


def _decode_body(raw_body: bytes) -> dict[str, Any]:
    try:
        body = json.loads(raw_body or b"{}")
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post(
    "/zoom",
    response_model=WebhookAck | UrlValidationResponse,
    status_code=HTTPStatus.OK,
    summary="Receive meeting lifecycle webhooks",
    description=(
        "Ingress for the video-conferencing provider.\n\n"
        "- `endpoint.url_validation` challenges are answered with "
        "`{plainToken, encryptedToken}`.\n"
        "- Every other delivery must carry a valid `x-zm-signature` / "
        "`x-zm-request-timestamp` pair, otherwise **401**.\n"
        "- Authenticated deliveries are always acknowledged with **200**, "
        "including unknown events and internal failures, so the provider does "
        "not retry-storm."
    ),
    responses={
        200: {
            "description": "Delivery acknowledged.",
            "content": {
                "application/json": {
                    "example": {
                        "status": "participant_joined",
                        "event": "meeting.participant_joined",
                        "meeting_id": "85367388662",
                        "detail": None,
                    }
                }
            },
        },
        401: {"description": "Signature or timestamp rejected."},
    },
)
async def receive_lifecycle_webhook(
    request: Request,
    tracker: MeetingLifecycleTracker = Depends(get_tracker),
):
    raw_body = await request.body()
    body = _decode_body(raw_body)
    secret = _secret()

    if body.get("event") == URL_VALIDATION_EVENT:
        payload = body.get("payload")
        plain_token = payload.get("plainToken") if isinstance(payload, Mapping) else None
        if not isinstance(plain_token, str):
            plain_token = ""
        if not secret or not plain_token:
            raise AuthenticationFailure("cannot answer url validation challenge")
        return UrlValidationResponse(**build_url_validation_response(plain_token, secret))

    auth = authenticate(
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
        request.headers.get(TIMESTAMP_HEADER),
        secret,
        tolerance=timedelta(seconds=get_settings().WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS),
    )
    if isinstance(auth, Rejected):
        logger.warning("Rejected lifecycle webhook: %s", auth.reason)
        raise AuthenticationFailure(auth.reason)

    event = parse_lifecycle_event(body)
    try:
        return await tracker.handle(event)
    except Exception:
        logger.exception("Failed to process %s webhook", event.kind)
        return WebhookAck(status="error", event=event.kind, detail="processing failed")


@router.get(
    "/zoom/meetings/{external_meeting_id}/participants",
    response_model=list[ParticipantRead],
    status_code=HTTPStatus.OK,
    summary="List tracked participant events for a meeting",
    responses={404: {"description": "Unknown meeting id."}},
)
async def list_meeting_participants(
    external_meeting_id: str,
    tracker: MeetingLifecycleTracker = Depends(get_tracker),
) -> list[ParticipantRead]:
    activities = await tracker.list_participants(external_meeting_id)
    if activities is None:
        raise NotFound(f"meeting {external_meeting_id} not found")
    return [ParticipantRead.model_validate(activity) for activity in activities]


@router.get(
    "/messaging",
    response_class=PlainTextResponse,
    status_code=HTTPStatus.OK,
    summary="Messaging provider subscription handshake",
    responses={403: {"description": "Mode or verify token mismatch."}},
)
async def verify_messaging_webhook(
    mode: str | None = Query(None, alias="hub.mode"),
    verify_token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
) -> str:
    expected = get_settings().MESSAGING_WEBHOOK_VERIFY_TOKEN
    if mode == "subscribe" and expected and verify_token == expected:
        logger.info("Messaging webhook verified")
        return challenge or ""

    logger.warning("Messaging webhook verification failed")
    raise Forbidden("webhook verification failed")


@router.post(
    "/messaging",
    response_model=MessagingWebhookAck,
    status_code=HTTPStatus.OK,
    summary="Receive messaging replies and delivery statuses",
    description=(
        "Survey button replies with id `rate:<meeting_id>:<score>` (score 1..5) "
        "are stored as the sender's rating for that meeting. Always 200."
    ),
)
async def receive_messaging_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> MessagingWebhookAck:
    body = _decode_body(await request.body())
    try:
        payload = MessagingWebhookPayload.model_validate(body)
    except ValidationError as exc:
        logger.warning("Ignoring malformed messaging webhook: %s", exc)
        return MessagingWebhookAck()

    try:
        return await process_messaging_webhook(db, payload)
    except Exception:
        logger.exception("Failed to process messaging webhook")
        return MessagingWebhookAck(status="error")
