# engagement_crm/models/user.py
from sqlalchemy import Column, ForeignKey, Integer, String

from engagement_crm.db.base import Base


class User(Base):
    """
    A community member or organizer.

    Members are created by an organizer (`creator_id`); organizers own their
    meetings through `Meeting.owner_id`.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, default="")
    email = Column(String(320), nullable=True, index=True)
    phone = Column(String(32), nullable=True, index=True)

    creator_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email}>"
