"""Tests for out-of-band content-feature extraction."""

import uuid

import pytest

from booknook.infrastructure.epub.reader import EpubReader
from booknook.services.background_tasks import extract_book_features_task
from conftest import make_book

HISTORY_CHAPTER = "<p>" + "The war of that century shaped the empire and its history. " * 4 + "</p>"


async def test_features_are_extracted_and_stored(session_maker, book_repo, storage, epub_factory):
    content = epub_factory(chapters=[HISTORY_CHAPTER])
    book = make_book("Empire")
    book.file = await storage.save_file(content, "empire.epub", book.owner_id)
    await book_repo.create(book)

    features = await extract_book_features_task(str(book.id), session_maker, storage, EpubReader())

    assert "history" in features.categories
    assert "century" in features.keywords
    stored = await book_repo.get_by_id(book.id)
    assert stored.content_features == features


async def test_missing_book_or_file_returns_none(session_maker, book_repo, storage):
    assert await extract_book_features_task(str(uuid.uuid4()), session_maker, storage, EpubReader()) is None

    no_file = await book_repo.create(make_book("No File"))
    assert await extract_book_features_task(str(no_file.id), session_maker, storage, EpubReader()) is None


async def test_storage_errors_propagate(session_maker, book_repo, storage, epub_factory):
    book = make_book("Gone")
    book.file = await storage.save_file(epub_factory(), "gone.epub", book.owner_id)
    await book_repo.create(book)
    await storage.delete_file(book.file.path)

    with pytest.raises(FileNotFoundError):
        await extract_book_features_task(str(book.id), session_maker, storage, EpubReader())
