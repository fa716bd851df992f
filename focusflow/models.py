from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class DocumentRecord(Base):
    """One stored document, addressed by its full slash-separated path."""

    __tablename__ = "documents"

    path = Column(String(500), primary_key=True)
    collection = Column(String(400), nullable=False, index=True)
    doc_id = Column(String(200), nullable=False)
    data = Column(SQLiteJSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
