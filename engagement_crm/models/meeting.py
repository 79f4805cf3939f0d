# engagement_crm/models/meeting.py
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from engagement_crm.db.base import Base
from engagement_crm.models.types import UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Meeting(Base):
    """
    A scheduled video meeting owned by a single organizer.

    Lifecycle columns
    -----------------
    - `status` moves NOT_STARTED -> IN_PROGRESS -> ENDED. The transition to
      ENDED is a conditional update and doubles as the finalize claim.
    - `finalizing_at` is the lease taken by the finalize claim. A finalize
      that failed before stamping `notified_at` releases it, and a stale
      lease can be taken over after `FINALIZE_LEASE_SECONDS`.
    - `notified_at` is set once post-meeting workflows were dispatched; a
      meeting only counts as finalized once it is set.
    - `recording_notified_at` is the claim for the missed-meeting fan-out,
      which only runs once a recording is available.
    """

    __tablename__ = "meetings"

    id = Column(Integer, primary_key=True, index=True)

    external_meeting_id = Column(String(64), nullable=False, unique=True, index=True)
    topic = Column(String(255), nullable=False, default="")

    owner_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    scheduled_start = Column(UTCDateTime, nullable=False, index=True)
    scheduled_end = Column(UTCDateTime, nullable=True)
    actual_start = Column(UTCDateTime, nullable=True)
    actual_end = Column(UTCDateTime, nullable=True)

    status = Column(String(32), nullable=False, default="NOT_STARTED")

    finalizing_at = Column(UTCDateTime, nullable=True)
    notified_at = Column(UTCDateTime, nullable=True)

    recording_link = Column(Text, nullable=True)
    recording_password = Column(String(255), nullable=True)
    recording_notified_at = Column(UTCDateTime, nullable=True)
    suppress_missed_outreach = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    owner = relationship("User")

    @property
    def effective_start(self) -> datetime | None:
        return self.actual_start or self.scheduled_start

    @property
    def effective_end(self) -> datetime | None:
        return self.actual_end or self.scheduled_end

    @property
    def has_recording(self) -> bool:
        return bool(self.recording_link)

    def __repr__(self) -> str:
        return (
            f"<Meeting id={self.id} external_id={self.external_meeting_id} "
            f"status={self.status}>"
        )
