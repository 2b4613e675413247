from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped
from sqlalchemy.sql import func

from .extensions import db

# Aliasing column
Column = db.Column


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(db.Model):
    __abstract__ = True
    created_uid: Mapped[int] = Column(db.Integer, nullable=True)
    created_date: Mapped[datetime] = Column(db.DateTime, server_default=sa.text('CURRENT_TIMESTAMP'))
    modified_uid: Mapped[int] = Column(db.Integer, nullable=True)
    modified_date: Mapped[datetime] = Column(db.DateTime, onupdate=func.now(), server_default=sa.text('CURRENT_TIMESTAMP'))
