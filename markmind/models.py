"""
MarkMind Models - SQLite schema for persisted fragments.

Tables:
- fragments: User highlights with their metadata and related-fragment links
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime, timezone


class Base(DeclarativeBase):
    pass


class FragmentRecord(Base):
    """
    A persisted highlight.

    List-valued fields (tags, topics, concepts, related ids) are stored as
    JSON columns; concepts are stored as their dict form.
    """
    __tablename__ = "fragments"

    # Client-generated, immutable id
    id = Column(String, primary_key=True)

    # The highlighted text and the user's note on it
    text = Column(Text, nullable=False)
    note = Column(Text, nullable=True)

    # Where it was captured
    url = Column(String, nullable=True, index=True)
    page_title = Column(String, nullable=True)

    color = Column(String, default="yellow")

    collections = Column(JSON, default=list)
    tags = Column(JSON, default=list)
    topics = Column(JSON, default=list)
    concepts = Column(JSON, default=list)

    # Times the user came back to this highlight
    reference_count = Column(Integer, default=0)

    # Ids of fragments the linker found related
    related_ids = Column(JSON, default=list)

    # Timestamps
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc))
