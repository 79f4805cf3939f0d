# engagement_crm/models/meeting_activity.py
from sqlalchemy import Column, ForeignKey, Integer, String

from engagement_crm.db.base import Base
from engagement_crm.models.types import UTCDateTime


class MeetingActivity(Base):
    """
    Raw attendance event: one row per participant join.

    Append-only; `leaving_time` is patched in by the matching leave event.
    `participant_key` identifies the provider participant even when it could
    not be matched to a known user.
    """

    __tablename__ = "meeting_activities"

    id = Column(Integer, primary_key=True, index=True)

    meeting_id = Column(
        Integer,
        ForeignKey("meetings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    participant_key = Column(String(320), nullable=False, index=True)
    participant_email = Column(String(320), nullable=True)
    participant_name = Column(String(255), nullable=True)

    joining_time = Column(UTCDateTime, nullable=False)
    leaving_time = Column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<MeetingActivity meeting_id={self.meeting_id} "
            f"participant={self.participant_key} join={self.joining_time} "
            f"leave={self.leaving_time}>"
        )
