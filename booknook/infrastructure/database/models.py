"""SQLAlchemy database models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class BookModel(Base):
    __tablename__ = "books"
    __table_args__ = (
        Index("ix_books_private_read_count", "private", "read_count"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(128), nullable=False, index=True)
    title = Column(String(512), nullable=False, index=True)
    author = Column(String(255), nullable=False, default="Unknown Author", index=True)
    description = Column(Text, nullable=False, default="")
    tags = Column(JSON, nullable=False, default=list)
    categories = Column(JSON, nullable=False, default=list)
    isbn = Column(String(20), nullable=True, index=True)
    publisher = Column(String(255), nullable=True)
    publication_date = Column(String(32), nullable=True)
    language = Column(String(16), nullable=True)
    page_count = Column(Integer, nullable=True, index=True)
    cover_url = Column(String(1024), nullable=False, default="")
    content_features = Column(JSON, nullable=True)  # {keywords, categories, sentimentScore}
    read_count = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)
    completion_count = Column(Integer, nullable=False, default=0)
    average_rating = Column(Float, nullable=False, default=0.0)
    ratings = Column(JSON, nullable=False, default=list)  # [{userId, rating, timestamp}]
    extraction_methods = Column(JSON, nullable=False, default=list)
    private = Column(Boolean, nullable=False, default=False)
    file = Column(JSON, nullable=True)  # {path, downloadURL, size, mimeType, fileName}
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class UserProfileModel(Base):
    __tablename__ = "user_profiles"

    user_id = Column(String(128), primary_key=True)
    display_name = Column(String(255), nullable=True)
    recently_read = Column(JSON, nullable=False, default=list)  # [{bookId, timestamp}] newest first
    last_read = Column(JSON, nullable=False, default=dict)  # {bookId: {progress, cfiLocation, timestamp}}
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class UserActivityModel(Base):
    """Append-only activity log. Rows are never updated."""

    __tablename__ = "user_activities"
    __table_args__ = (
        Index("ix_activities_user_action", "user_id", "action"),
        Index("ix_activities_book", "book_id"),
        Index("ix_activities_timestamp", "timestamp"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False)
    book_id = Column(Uuid, nullable=False)
    action = Column(String(20), nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    activity_metadata = Column("metadata", JSON, nullable=False, default=dict)


class RecommendationEventModel(Base):
    __tablename__ = "recommendation_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False, index=True)
    variant = Column(String(20), nullable=False)
    source_counts = Column(JSON, nullable=False, default=dict)
    total = Column(Integer, nullable=False, default=0)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
