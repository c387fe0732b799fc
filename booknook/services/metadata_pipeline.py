"""Multi-stage metadata extraction for uploaded EPUB files.

Stages run sequentially; each one either produces a :class:`StageResult`
or nothing. A failing or timed-out stage is logged and skipped, it never
aborts the pipeline. Every result carries a merge policy:

========================  ==========  ===============================
stage                     policy      method tags
========================  ==========  ===============================
filename seed             (seed)      none
structural analysis       FILL        epub_structure_analysis
package metadata/sample   FILL        epub_metadata, epub_cover,
                                      content_extraction,
                                      title_pattern_match,
                                      author_pattern_match
signature matching        OVERRIDE    content_signature_match
catalog lookup            FILL        <source>_isbn / <source>_title
internal title match      FILL        internal_db_match
content classifier        OVERRIDE    ai_content_analysis
========================  ==========  ===============================

Fields seeded from the filename are provisional: FILL treats them as empty.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import PurePath
from typing import Any, Optional

from booknook.domain.entities import ExtractedMetadata
from booknook.domain.repositories import IBookRepository, ICatalogClient
from booknook.domain.services import IContentClassifier, IEpubReader, IMetadataExtractor
from booknook.infrastructure.epub.reader import first_isbn, normalize_isbn
from booknook.services.signatures import SignatureRegistry, fingerprint, match_signature

logger = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Unknown Author"
FALLBACK_METHOD = "fallback_only"

YEAR_SUFFIX = re.compile(r"\s*\(\d{4}[^)]*\).*$")
TITLE_PATTERNS = (
    re.compile(r"(?:title|book title)\s*[:\-]\s*([^.,\n\r]{3,50})", re.IGNORECASE),
    re.compile(r"^([^.,\n\r]{3,50})\s*(?:by|author)\s+", re.IGNORECASE),
)
AUTHOR_PATTERNS = (
    re.compile(r"(?:author|by)\s*[:\-]\s*([^.,\n\r]{3,50})", re.IGNORECASE),
    re.compile(r"(?:written by|authored by)\s+([^.,\n\r]{3,50})", re.IGNORECASE),
)
MAX_CONTENT_FIELD_LENGTH = 100

# Display labels, highest priority first.
SOURCE_LABELS = (
    (("ai_content_analysis",), "AI content analysis"),
    (("epub_metadata",), "EPUB metadata"),
    (("google_books_isbn", "google_books_title"), "Google Books"),
    (("internal_db_match",), "BookNook database"),
)


class MergePolicy(str, Enum):
    FILL = "fill"
    OVERRIDE = "override"


@dataclass
class StageResult:
    patch: dict[str, Any] = field(default_factory=dict)
    methods: list[str] = field(default_factory=list)
    policy: MergePolicy = MergePolicy.FILL


@dataclass
class ExtractionContext:
    content: bytes
    filename: str
    metadata: ExtractedMetadata
    provisional: set[str] = field(default_factory=set)
    sample_text: str = ""


_MERGEABLE = {f.name for f in fields(ExtractedMetadata)} - {"extraction_methods"}


def _is_empty(name: str, value: Any) -> bool:
    if value is None or value == "" or value == []:
        return True
    return name == "author" and value == UNKNOWN_AUTHOR


def merge_metadata(ctx: ExtractionContext, result: StageResult) -> None:
    """Apply *result* to the context field by field.

    FILL writes a field only when it is empty or still provisional.
    OVERRIDE writes every non-empty value in the patch.
    """
    metadata = ctx.metadata
    for name, value in result.patch.items():
        if name not in _MERGEABLE or _is_empty(name, value):
            continue
        current = getattr(metadata, name)
        if result.policy is MergePolicy.OVERRIDE or _is_empty(name, current) or name in ctx.provisional:
            setattr(metadata, name, list(value) if isinstance(value, (list, tuple)) else value)
            ctx.provisional.discard(name)
    for method in result.methods:
        metadata.extraction_methods.append(method)


def parse_filename(filename: str) -> tuple[str, Optional[str]]:
    """``"Author - Title (2019).epub"`` -> ``("Title", "Author")``."""
    stem = PurePath(filename or "").name
    if stem.lower().endswith(".epub"):
        stem = stem[: -len(".epub")]
    title, author = stem, None
    parts = stem.split(" - ")
    if len(parts) >= 2:
        author = parts[0].strip() or None
        title = " - ".join(parts[1:]).strip()
    title = YEAR_SUFFIX.sub("", title).strip()
    return title or stem.strip() or "Untitled", author


def confidence_source_label(methods: list[str]) -> str:
    """Human label for where the metadata came from. Display only."""
    meaningful = [m for m in methods if m != FALLBACK_METHOD]
    if not meaningful:
        return "basic extraction"
    for tags, label in SOURCE_LABELS:
        if any(tag in meaningful for tag in tags):
            return label
    return "automated extraction"


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------
class ExtractionStage(ABC):
    name: str = "stage"

    @abstractmethod
    async def run(self, ctx: ExtractionContext) -> Optional[StageResult]:
        pass


class StructureStage(ExtractionStage):
    """Title/creator/identifier straight from the package document."""

    name = "structure"

    def __init__(self, reader: IEpubReader):
        self.reader = reader

    async def run(self, ctx: ExtractionContext) -> Optional[StageResult]:
        structure = await self.reader.analyze_structure(ctx.content)
        if structure is None or not structure.title:
            return None
        return StageResult(
            patch={
                "title": structure.title,
                "author": structure.creator,
                "isbn": first_isbn(structure.identifiers),
                "language": structure.language,
            },
            methods=["epub_structure_analysis"],
        )


class PackageStage(ExtractionStage):
    """Full package metadata, cover, and a text sample scanned for labels."""

    name = "package"

    def __init__(self, reader: IEpubReader, sample_sections: int = 3, sample_max_chars: int = 20000):
        self.reader = reader
        self.sample_sections = sample_sections
        self.sample_max_chars = sample_max_chars

    async def run(self, ctx: ExtractionContext) -> Optional[StageResult]:
        package = await self.reader.read_package(ctx.content, self.sample_sections, self.sample_max_chars)
        if package is None:
            return None

        result = StageResult(methods=["epub_metadata"])
        patch = result.patch
        patch["title"] = package.title
        patch["author"] = package.creators[0] if package.creators else None
        patch["description"] = package.description
        patch["language"] = package.language
        patch["publisher"] = package.publisher
        patch["publication_date"] = package.date
        patch["isbn"] = first_isbn(package.identifiers)
        patch["categories"] = package.subjects
        if package.cover_bytes:
            patch["cover_bytes"] = package.cover_bytes
            patch["cover_media_type"] = package.cover_media_type or "image/jpeg"
            result.methods.append("epub_cover")

        text = package.sample_text
        if text:
            ctx.sample_text = text
            result.methods.append("content_extraction")
            self._scan_labels(ctx, text, result)
        return result

    @staticmethod
    def _scan_labels(ctx: ExtractionContext, text: str, result: StageResult) -> None:
        current_title = ctx.metadata.title
        for pattern in TITLE_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue
            candidate = match.group(1).strip()
            if len(candidate) > 3 and candidate != current_title and len(candidate) < MAX_CONTENT_FIELD_LENGTH:
                result.patch["content_title"] = candidate
                if not result.patch.get("title"):
                    result.patch["title"] = candidate
                result.methods.append("title_pattern_match")
                break

        for pattern in AUTHOR_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue
            candidate = match.group(1).strip()
            if len(candidate) > 3 and len(candidate) < MAX_CONTENT_FIELD_LENGTH:
                result.patch["content_author"] = candidate
                if not result.patch.get("author"):
                    result.patch["author"] = candidate
                result.methods.append("author_pattern_match")
                break


class SignatureStage(ExtractionStage):
    name = "signature"

    def __init__(self, registry: SignatureRegistry, threshold: int = 50):
        self.registry = registry
        self.threshold = threshold

    async def run(self, ctx: ExtractionContext) -> Optional[StageResult]:
        if not ctx.sample_text:
            return None
        match = match_signature(
            ctx.sample_text, self.registry, self.threshold, prints=fingerprint(ctx.sample_text)
        )
        if match is None:
            return None
        canonical = match.signature.metadata
        logger.info("Signature %s matched with confidence %.2f", match.signature.key, match.confidence)
        return StageResult(
            patch={
                "title": canonical.title,
                "author": canonical.author,
                "description": canonical.description,
                "isbn": canonical.isbn,
                "publisher": canonical.publisher,
                "publication_date": canonical.publication_date,
                "tags": list(canonical.tags),
                "confidence": match.confidence,
            },
            methods=["content_signature_match"],
            policy=MergePolicy.OVERRIDE,
        )


class CatalogStage(ExtractionStage):
    """ISBN lookup when an ISBN is known, else title+author when the title is real."""

    name = "catalog"

    def __init__(self, catalog: ICatalogClient):
        self.catalog = catalog

    async def run(self, ctx: ExtractionContext) -> Optional[StageResult]:
        metadata = ctx.metadata
        if metadata.isbn:
            record, mode = await self.catalog.lookup_by_isbn(metadata.isbn), "isbn"
        elif metadata.title and "title" not in ctx.provisional:
            author = None if _is_empty("author", metadata.author) else metadata.author
            record, mode = await self.catalog.lookup_by_title_author(metadata.title, author), "title"
        else:
            return None
        if record is None:
            return None
        return StageResult(
            patch={
                "title": record.title,
                "author": ", ".join(record.authors) if record.authors else None,
                "description": record.description,
                "categories": record.categories,
                "publisher": record.publisher,
                "publication_date": record.published_date,
                "cover_url": record.thumbnail,
                "language": record.language,
                "isbn": normalize_isbn(record.isbn),
                "page_count": record.page_count,
            },
            methods=[f"{record.source}_{mode}"],
        )


class InternalCatalogStage(ExtractionStage):
    """Borrow fields from an already stored book with exactly the same title."""

    name = "internal_catalog"

    def __init__(self, book_repo: IBookRepository):
        self.book_repo = book_repo

    async def run(self, ctx: ExtractionContext) -> Optional[StageResult]:
        title = ctx.metadata.title
        if not title or "title" in ctx.provisional:
            return None
        existing = await self.book_repo.find_by_title(title)
        if existing is None:
            return None
        return StageResult(
            patch={
                "author": existing.author,
                "description": existing.description,
                "tags": existing.tags,
                "cover_url": existing.cover_url,
            },
            methods=["internal_db_match"],
        )


class ClassifierStage(ExtractionStage):
    name = "classifier"

    def __init__(self, classifier: IContentClassifier, threshold: float = 0.8):
        self.classifier = classifier
        self.threshold = threshold

    async def run(self, ctx: ExtractionContext) -> Optional[StageResult]:
        if not ctx.sample_text:
            return None
        guess = await self.classifier.classify(ctx.sample_text)
        if guess is None or guess.confidence <= self.threshold:
            return None
        return StageResult(
            patch={
                "title": guess.title,
                "author": guess.author,
                "description": guess.description,
                "tags": guess.tags,
                "ai_confidence": guess.confidence,
            },
            methods=["ai_content_analysis"],
            policy=MergePolicy.OVERRIDE,
        )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
class MetadataExtractionPipeline(IMetadataExtractor):

    def __init__(self, stages: list[ExtractionStage], stage_timeout: float = 45.0):
        self.stages = stages
        self.stage_timeout = stage_timeout

    async def extract_metadata(self, content: bytes, filename: str) -> ExtractedMetadata:
        title, author = parse_filename(filename)
        try:
            ctx = ExtractionContext(
                content=content,
                filename=filename,
                metadata=ExtractedMetadata(title=title, author=author or UNKNOWN_AUTHOR),
                provisional={"title", "author"} if author else {"title"},
            )
            for stage in self.stages:
                result = await self._run_stage(stage, ctx)
                if result is not None:
                    merge_metadata(ctx, result)
            metadata = ctx.metadata
            if not metadata.extraction_methods:
                metadata.extraction_methods.append(FALLBACK_METHOD)
            logger.info(
                "Extracted metadata for %s: %r by %r via %s",
                filename, metadata.title, metadata.author, metadata.extraction_methods,
            )
            return metadata
        except Exception as exc:
            logger.error("Metadata extraction failed for %s: %s", filename, exc, exc_info=True)
            return ExtractedMetadata(
                title=title,
                author=author or UNKNOWN_AUTHOR,
                extraction_methods=[FALLBACK_METHOD],
            )

    async def _run_stage(self, stage: ExtractionStage, ctx: ExtractionContext) -> Optional[StageResult]:
        try:
            return await asyncio.wait_for(stage.run(ctx), timeout=self.stage_timeout)
        except asyncio.TimeoutError:
            logger.warning("Extraction stage %s timed out after %.0fs", stage.name, self.stage_timeout)
        except Exception as exc:
            logger.warning("Extraction stage %s failed: %s", stage.name, exc)
        return None


def build_default_stages(
    reader: IEpubReader,
    registry: SignatureRegistry,
    catalog: ICatalogClient,
    book_repo: IBookRepository,
    classifier: IContentClassifier,
    signature_threshold: int = 50,
    classifier_threshold: float = 0.8,
    sample_sections: int = 3,
    sample_max_chars: int = 20000,
) -> list[ExtractionStage]:
    return [
        StructureStage(reader),
        PackageStage(reader, sample_sections, sample_max_chars),
        SignatureStage(registry, signature_threshold),
        CatalogStage(catalog),
        InternalCatalogStage(book_repo),
        ClassifierStage(classifier, classifier_threshold),
    ]
