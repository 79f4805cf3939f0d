# engagement_crm/services/survey_replies.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_crm.models.meeting_engagement import MeetingEngagement
from engagement_crm.models.user import User
from engagement_crm.schemas.messaging import MessagingWebhookAck, MessagingWebhookPayload

logger = logging.getLogger(__name__)

RATING_PREFIX = "rate"
MIN_RATING = 1
MAX_RATING = 5

# Formatting characters stripped from stored phone numbers before matching.
PHONE_PUNCTUATION = ("+", " ", "-", "(", ")", ".")


@dataclass(frozen=True)
class RatingReply:
    meeting_id: int
    score: int


def parse_rating_reply(reply_id: Optional[str]) -> Optional[RatingReply]:
    """
    Parse a survey button id of the form `rate:<meeting_id>:<score>`.

    Returns None for anything else, including scores outside 1..5.
    """
    if not reply_id:
        return None

    parts = reply_id.strip().split(":")
    if len(parts) != 3 or parts[0] != RATING_PREFIX:
        return None

    try:
        meeting_id = int(parts[1])
        score = int(parts[2])
    except ValueError:
        return None

    if not MIN_RATING <= score <= MAX_RATING:
        return None
    return RatingReply(meeting_id=meeting_id, score=score)


def _phone_digits(sender: str) -> str:
    return "".join(ch for ch in sender if ch.isdigit())


def _stored_phone_digits(column):
    normalized = column
    for ch in PHONE_PUNCTUATION:
        normalized = func.replace(normalized, ch, "")
    return normalized


async def record_rating(db: AsyncSession, sender: str, reply: RatingReply) -> bool:
    """
    Store the rating on the sender's invitation for that meeting.

    The sender is matched on phone digits only, so a stored `+1 555-0001`
    matches a sender `15550001`. Returns False when the sender matches no
    user or the user was not invited. A repeated reply overwrites the
    earlier rating.
    """
    digits = _phone_digits(sender)
    if not digits:
        return False

    result = await db.execute(
        select(User.id)
        .where(_stored_phone_digits(User.phone) == digits)
        .order_by(User.id)
        .limit(1)
    )
    user_id = result.scalar_one_or_none()
    if user_id is None:
        logger.info("Rating reply from unknown sender %s ignored", sender)
        return False

    updated = await db.execute(
        update(MeetingEngagement)
        .where(
            MeetingEngagement.meeting_id == reply.meeting_id,
            MeetingEngagement.user_id == user_id,
        )
        .values(rating=reply.score)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if updated.rowcount != 1:
        logger.info(
            "User %s replied with a rating for meeting %s without an invitation",
            user_id,
            reply.meeting_id,
        )
        return False

    logger.info("Recorded rating %d from user %s for meeting %s", reply.score, user_id, reply.meeting_id)
    return True


async def process_messaging_webhook(
    db: AsyncSession,
    payload: MessagingWebhookPayload,
) -> MessagingWebhookAck:
    ack = MessagingWebhookAck()
    for entry in payload.entry:
        for change in entry.changes:
            for status in change.value.statuses:
                ack.statuses_seen += 1
                logger.debug("Message %s is %s", status.id, status.status)

            for message in change.value.messages:
                reply = parse_rating_reply(message.reply_id)
                if reply is None:
                    continue
                if await record_rating(db, message.sender, reply):
                    ack.ratings_recorded += 1
    return ack
