"""Shared fixtures: a throwaway SQLite database, repositories, and EPUB builders."""

import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest
from ebooklib import epub
from sqlalchemy.pool import NullPool

from booknook.domain.entities import Book, ContentFeatures
from booknook.infrastructure.database.connection import build_engine, build_session_maker, init_db
from booknook.infrastructure.database.repository import (
    ActivityRepository,
    BookRepository,
    RecommendationEventRepository,
    UserProfileRepository,
)
from booknook.infrastructure.storage.local import LocalStorageService

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def sqlite_engine(path: Path):
    # NullPool: no connection outlives the event loop that opened it.
    return build_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


@pytest.fixture
async def session_maker(tmp_path):
    engine = sqlite_engine(tmp_path / "booknook-test.db")
    await init_db(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def book_repo(session_maker):
    return BookRepository(session_maker)


@pytest.fixture
def profile_repo(session_maker):
    return UserProfileRepository(session_maker)


@pytest.fixture
def activity_repo(session_maker):
    return ActivityRepository(session_maker)


@pytest.fixture
def event_repo(session_maker):
    return RecommendationEventRepository(session_maker)


@pytest.fixture
def storage(tmp_path):
    return LocalStorageService(str(tmp_path / "storage"), "http://testserver/files")


def make_book(
    title: str = "A Book",
    *,
    owner_id: str = "owner-1",
    read_count: int = 0,
    page_count: Optional[int] = None,
    tags: Optional[list[str]] = None,
    author: str = "Some Author",
    description: str = "",
    features: Optional[ContentFeatures] = None,
    private: bool = False,
    age_minutes: int = 0,
) -> Book:
    created = BASE_TIME - timedelta(minutes=age_minutes)
    return Book(
        id=uuid.uuid4(),
        title=title,
        owner_id=owner_id,
        author=author,
        description=description,
        tags=list(tags or []),
        page_count=page_count,
        read_count=read_count,
        content_features=features,
        private=private,
        created_at=created,
        updated_at=created,
    )


def build_epub(
    path: Path,
    *,
    title: str = "The Quiet Harbor",
    author: str = "Mara Linde",
    identifier: str = "9780316769488",
    language: str = "en",
    description: Optional[str] = "A story about a harbor town.",
    chapters: Optional[list[str]] = None,
    cover: Optional[bytes] = None,
) -> bytes:
    """Write a small but valid EPUB with ebooklib and return its bytes."""
    book = epub.EpubBook()
    book.set_identifier(identifier)
    book.set_title(title)
    book.set_language(language)
    if author:
        book.add_author(author)
    if description:
        book.add_metadata("DC", "description", description)
    if cover:
        book.set_cover("cover.jpg", cover, create_page=False)

    chapters = chapters or ["<p>The harbor was quiet that morning.</p>"]
    items = []
    for number, body in enumerate(chapters, start=1):
        chapter = epub.EpubHtml(title=f"Chapter {number}", file_name=f"chap_{number}.xhtml", lang=language)
        chapter.content = f"<html><body><h1>Chapter {number}</h1>{body}</body></html>"
        book.add_item(chapter)
        items.append(chapter)

    book.toc = items
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = items

    target = path / f"{uuid.uuid4()}.epub"
    epub.write_epub(str(target), book)
    return target.read_bytes()


@pytest.fixture
def epub_factory(tmp_path):
    def _factory(**kwargs) -> bytes:
        return build_epub(tmp_path, **kwargs)
    return _factory
