"""Tests for the metadata extraction pipeline."""

import asyncio
from typing import Optional

import pytest

from booknook.domain.entities import CatalogRecord, ContentClassification, ExtractedMetadata
from booknook.infrastructure.epub.reader import EpubReader, normalize_isbn
from booknook.infrastructure.llm.services import HeuristicContentClassifier
from booknook.services.metadata_pipeline import (
    CatalogStage,
    ClassifierStage,
    ExtractionContext,
    ExtractionStage,
    MergePolicy,
    MetadataExtractionPipeline,
    StageResult,
    build_default_stages,
    confidence_source_label,
    merge_metadata,
    parse_filename,
)
from booknook.services.signatures import default_registry


class FakeCatalog:
    source = "google_books"

    def __init__(self, record: Optional[CatalogRecord] = None):
        self.record = record
        self.calls = []

    async def lookup_by_isbn(self, isbn):
        self.calls.append(("isbn", isbn))
        return self.record

    async def lookup_by_title_author(self, title, author=None):
        self.calls.append(("title", title, author))
        return self.record


class FakeBookRepo:
    def __init__(self, book=None):
        self.book = book

    async def find_by_title(self, title):
        return self.book


class FakeClassifier:
    def __init__(self, guess):
        self.guess = guess

    async def classify(self, text):
        return self.guess


class FailingStage(ExtractionStage):
    name = "failing"

    async def run(self, ctx):
        raise RuntimeError("boom")


class SlowStage(ExtractionStage):
    name = "slow"

    async def run(self, ctx):
        await asyncio.sleep(5)
        return StageResult(patch={"title": "Too Late"}, methods=["slow"])


class StaticStage(ExtractionStage):
    name = "static"

    def __init__(self, result):
        self.result = result

    async def run(self, ctx):
        return self.result


def default_pipeline(catalog=None, book_repo=None):
    stages = build_default_stages(
        reader=EpubReader(timeout_seconds=10),
        registry=default_registry(),
        catalog=catalog or FakeCatalog(),
        book_repo=book_repo or FakeBookRepo(),
        classifier=HeuristicContentClassifier(),
    )
    return MetadataExtractionPipeline(stages, stage_timeout=10)


# ---------------------------------------------------------------------------
# Filename fallback
# ---------------------------------------------------------------------------
def test_parse_filename_author_title_and_year():
    assert parse_filename("Thomas Erikson - Surrounded by Idiots (2019).epub") == (
        "Surrounded by Idiots",
        "Thomas Erikson",
    )


def test_parse_filename_without_author():
    assert parse_filename("my_book.epub") == ("my_book", None)
    assert parse_filename("A - B - C.epub") == ("B - C", "A")


async def test_filename_stage_alone():
    pipeline = MetadataExtractionPipeline(stages=[])
    metadata = await pipeline.extract_metadata(b"", "Thomas Erikson - Surrounded by Idiots (2019).epub")
    assert metadata.author == "Thomas Erikson"
    assert metadata.title == "Surrounded by Idiots"
    assert metadata.extraction_methods == ["fallback_only"]


# ---------------------------------------------------------------------------
# Never raises
# ---------------------------------------------------------------------------
@pytest.mark.parametrize("content", [b"", b"not an epub at all", b"PK\x03\x04garbage"])
async def test_corrupt_input_yields_filename_record(content):
    catalog = FakeCatalog()
    metadata = await default_pipeline(catalog).extract_metadata(content, "broken file.epub")
    assert metadata.title == "broken file"
    assert metadata.author == "Unknown Author"
    assert metadata.extraction_methods == ["fallback_only"]
    # A provisional filename title is never sent to the catalogs.
    assert catalog.calls == []


async def test_failing_and_slow_stages_are_skipped():
    pipeline = MetadataExtractionPipeline(
        stages=[
            FailingStage(),
            SlowStage(),
            StaticStage(StageResult(patch={"author": "Mara Linde"}, methods=["static"])),
        ],
        stage_timeout=0.05,
    )
    metadata = await pipeline.extract_metadata(b"", "The Quiet Harbor.epub")
    assert metadata.title == "The Quiet Harbor"
    assert metadata.author == "Mara Linde"
    assert metadata.extraction_methods == ["static"]


async def test_broken_stage_output_still_returns_a_record():
    pipeline = MetadataExtractionPipeline(stages=[StaticStage("not a stage result")])
    metadata = await pipeline.extract_metadata(b"", "Mara Linde - The Quiet Harbor.epub")
    assert metadata.title == "The Quiet Harbor"
    assert metadata.author == "Mara Linde"
    assert metadata.extraction_methods == ["fallback_only"]


# ---------------------------------------------------------------------------
# Real EPUBs
# ---------------------------------------------------------------------------
async def test_epub_metadata_and_isbn_catalog_lookup(epub_factory):
    content = epub_factory()
    record = CatalogRecord(
        source="google_books",
        title="The Quiet Harbor (Catalog Edition)",
        authors=["M. Linde"],
        description="Catalog blurb",
        categories=["Fiction"],
        page_count=320,
    )
    catalog = FakeCatalog(record)
    metadata = await default_pipeline(catalog).extract_metadata(content, "upload.epub")

    assert metadata.title == "The Quiet Harbor"
    assert metadata.author == "Mara Linde"
    assert metadata.isbn == "9780316769488"
    assert metadata.description == "A story about a harbor town."
    # Catalog results only fill gaps.
    assert metadata.page_count == 320
    assert metadata.categories == ["Fiction"]
    assert catalog.calls == [("isbn", "9780316769488")]
    assert metadata.extraction_methods[:3] == ["epub_structure_analysis", "epub_metadata", "content_extraction"]
    assert "google_books_isbn" in metadata.extraction_methods
    assert confidence_source_label(metadata.extraction_methods) == "EPUB metadata"


async def test_signature_match_overrides_package_metadata(epub_factory):
    content = epub_factory(
        title="Scanned Upload",
        author="Someone Else",
        chapters=["<p>Notes on Surrounded by Idiots by Thomas Erikson.</p>"],
    )
    metadata = await default_pipeline().extract_metadata(content, "scan.epub")
    assert metadata.title == "Surrounded by Idiots"
    assert metadata.author == "Thomas Erikson"
    assert metadata.confidence >= 0.5
    assert metadata.isbn == "9781250179944"
    assert "content_signature_match" in metadata.extraction_methods


async def test_internal_match_fills_missing_fields(epub_factory):
    from conftest import make_book

    existing = make_book("The Quiet Harbor", author="Mara Linde", tags=["sea"], description="")
    existing.cover_url = "http://covers/harbor.jpg"
    content = epub_factory(description=None)
    metadata = await default_pipeline(book_repo=FakeBookRepo(existing)).extract_metadata(content, "x.epub")
    assert metadata.tags == ["sea"]
    assert metadata.cover_url == "http://covers/harbor.jpg"
    assert "internal_db_match" in metadata.extraction_methods


# ---------------------------------------------------------------------------
# Merge and individual stages
# ---------------------------------------------------------------------------
def _ctx(**metadata) -> ExtractionContext:
    return ExtractionContext(content=b"", filename="f.epub", metadata=ExtractedMetadata(**metadata))


def test_fill_only_writes_empty_or_provisional_fields():
    ctx = _ctx(title="Filename Title", author="Kept Author", description="")
    ctx.provisional = {"title"}
    merge_metadata(ctx, StageResult(patch={"title": "Real", "author": "Other", "description": "New"}))
    assert ctx.metadata.title == "Real"
    assert ctx.metadata.author == "Kept Author"
    assert ctx.metadata.description == "New"
    assert "title" not in ctx.provisional


def test_fill_treats_unknown_author_as_empty():
    ctx = _ctx(title="T")
    merge_metadata(ctx, StageResult(patch={"author": "Mara Linde"}))
    assert ctx.metadata.author == "Mara Linde"


def test_override_writes_non_empty_values_only():
    ctx = _ctx(title="Old", author="Old Author", description="Keep me")
    merge_metadata(
        ctx,
        StageResult(
            patch={"title": "New", "author": None, "description": ""},
            methods=["m"],
            policy=MergePolicy.OVERRIDE,
        ),
    )
    assert ctx.metadata.title == "New"
    assert ctx.metadata.author == "Old Author"
    assert ctx.metadata.description == "Keep me"
    assert ctx.metadata.extraction_methods == ["m"]


async def test_classifier_needs_confidence_above_threshold():
    ctx = _ctx(title="T")
    ctx.sample_text = "some text"
    low = ClassifierStage(FakeClassifier(ContentClassification(title="X", author="Y", confidence=0.8)))
    assert await low.run(ctx) is None

    high = ClassifierStage(FakeClassifier(ContentClassification(title="X", author="Y", confidence=0.9)))
    result = await high.run(ctx)
    assert result.policy is MergePolicy.OVERRIDE
    assert result.patch["ai_confidence"] == 0.9
    assert result.methods == ["ai_content_analysis"]


async def test_catalog_title_lookup_tags_source_and_mode():
    record = CatalogRecord(source="open_library", title="The Quiet Harbor", authors=["Mara Linde"])
    catalog = FakeCatalog(record)
    ctx = _ctx(title="The Quiet Harbor", author="Mara Linde")
    result = await CatalogStage(catalog).run(ctx)
    assert catalog.calls == [("title", "The Quiet Harbor", "Mara Linde")]
    assert result.methods == ["open_library_title"]


async def test_catalog_stage_skips_provisional_title():
    catalog = FakeCatalog()
    ctx = _ctx(title="upload")
    ctx.provisional = {"title"}
    assert await CatalogStage(catalog).run(ctx) is None
    assert catalog.calls == []


def test_confidence_source_label():
    assert confidence_source_label([]) == "basic extraction"
    assert confidence_source_label(["fallback_only"]) == "basic extraction"
    assert confidence_source_label(["epub_metadata", "ai_content_analysis"]) == "AI content analysis"
    assert confidence_source_label(["google_books_title"]) == "Google Books"
    assert confidence_source_label(["internal_db_match"]) == "BookNook database"
    assert confidence_source_label(["content_signature_match"]) == "automated extraction"


def test_normalize_isbn():
    assert normalize_isbn("urn:isbn:978-0-316-76948-8") == "9780316769488"
    assert normalize_isbn("0-306-40615-X") == "030640615X"
    assert normalize_isbn("urn:uuid:1234") is None
    assert normalize_isbn("12345") is None
