# engagement_crm/models/meeting_engagement.py
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from engagement_crm.db.base import Base


class MeetingEngagement(Base):
    """
    Invitation record for a single (meeting, user) pair.

    Created when the meeting is scheduled; `attended` is flipped by
    reconciliation and `rating` is filled from the experience survey reply.
    """

    __tablename__ = "meeting_engagements"

    id = Column(Integer, primary_key=True, index=True)

    meeting_id = Column(
        Integer,
        ForeignKey("meetings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    interested = Column(String(16), nullable=False, default="no-response")
    attended = Column(Boolean, nullable=False, default=False)
    rating = Column(Integer, nullable=True)

    meeting = relationship("Meeting", backref="engagements")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint(
            "meeting_id",
            "user_id",
            name="uq_meeting_engagements_meeting_user",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<MeetingEngagement meeting_id={self.meeting_id} user_id={self.user_id} "
            f"attended={self.attended}>"
        )
