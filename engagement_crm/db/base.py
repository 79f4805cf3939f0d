# engagement_crm/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models in the Engagement CRM service.

    Model modules are imported by `engagement_crm.db.session` so that
    `Base.metadata` knows every table before the schema is created.
    """
    pass
