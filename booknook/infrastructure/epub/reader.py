"""EPUB reading adapter.

Structural analysis goes straight to the zip (``zipfile`` + ElementTree);
full reading goes through ``ebooklib`` with ``BeautifulSoup`` turning spine
XHTML into text. Parsing is blocking, so every public method runs it in a
worker thread under a timeout.
"""

import asyncio
import io
import logging
import os
import re
import tempfile
import zipfile
from typing import Optional
from xml.etree import ElementTree as ET

import ebooklib
from bs4 import BeautifulSoup
from ebooklib import epub

from booknook.domain.entities import EpubPackage, EpubStructure
from booknook.domain.services import IEpubReader

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
NS = {
    "container": "urn:oasis:names:tc:opendocument:xmlns:container",
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
}

_ISBN_CHARS = re.compile(r"[^0-9Xx]")


def normalize_isbn(value: Optional[str]) -> Optional[str]:
    """Reduce *value* to digits/``X``; return it only if it is ISBN-10 or ISBN-13 shaped."""
    if not value:
        return None
    candidate = value.strip()
    if candidate.lower().startswith("urn:isbn:"):
        candidate = candidate[len("urn:isbn:"):]
    elif candidate.lower().startswith("isbn:"):
        candidate = candidate[len("isbn:"):]
    if re.search(r"[A-WYZa-wyz]", candidate):
        # uuid:, urn:uuid:, calibre ids and similar are not ISBNs.
        return None
    digits = _ISBN_CHARS.sub("", candidate).upper()
    if len(digits) == 13 and digits.isdigit():
        return digits
    if len(digits) == 10 and digits[:9].isdigit() and (digits[9].isdigit() or digits[9] == "X"):
        return digits
    return None


def first_isbn(identifiers: list[str]) -> Optional[str]:
    for identifier in identifiers:
        isbn = normalize_isbn(identifier)
        if isbn:
            return isbn
    return None


class EpubReader(IEpubReader):

    def __init__(self, timeout_seconds: float = 30.0):
        self.timeout_seconds = timeout_seconds

    async def analyze_structure(self, content: bytes) -> Optional[EpubStructure]:
        return await self._run(self._analyze_structure_sync, content)

    async def read_package(
        self, content: bytes, sample_sections: int = 3, sample_max_chars: int = 20000,
    ) -> Optional[EpubPackage]:
        return await self._run(self._read_package_sync, content, sample_sections, sample_max_chars)

    async def read_text(self, content: bytes, max_sections: int = 5, max_chars: int = 50000) -> str:
        text = await self._run(self._read_text_sync, content, max_sections, max_chars)
        return text or ""

    async def _run(self, func, *args):
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout_seconds)

    # ------------------------------------------------------------------
    # Structural analysis (zip + package document)
    # ------------------------------------------------------------------
    @staticmethod
    def _analyze_structure_sync(content: bytes) -> Optional[EpubStructure]:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            container = ET.fromstring(archive.read(CONTAINER_PATH))
            rootfile = container.find(".//container:rootfile", NS)
            if rootfile is None or not rootfile.get("full-path"):
                logger.debug("container.xml has no rootfile")
                return None
            package = ET.fromstring(archive.read(rootfile.get("full-path")))

        metadata = package.find("opf:metadata", NS)
        if metadata is None:
            return None

        def _text(tag: str) -> Optional[str]:
            element = metadata.find(f"dc:{tag}", NS)
            if element is None or not (element.text or "").strip():
                return None
            return element.text.strip()

        return EpubStructure(
            title=_text("title"),
            creator=_text("creator"),
            language=_text("language"),
            identifiers=[
                element.text.strip()
                for element in metadata.findall("dc:identifier", NS)
                if element.text and element.text.strip()
            ],
        )

    # ------------------------------------------------------------------
    # Full read through ebooklib
    # ------------------------------------------------------------------
    @staticmethod
    def _open(content: bytes) -> epub.EpubBook:
        # ebooklib wants a path; hand it a temporary file.
        handle, path = tempfile.mkstemp(suffix=".epub")
        try:
            with os.fdopen(handle, "wb") as f:
                f.write(content)
            return epub.read_epub(path, options={"ignore_ncx": True})
        finally:
            os.remove(path)

    @staticmethod
    def _values(book: epub.EpubBook, name: str) -> list[str]:
        return [
            value.strip()
            for value, _attrs in book.get_metadata("DC", name)
            if isinstance(value, str) and value.strip()
        ]

    @staticmethod
    def _section_texts(book: epub.EpubBook, max_sections: int, max_chars: int) -> str:
        parts: list[str] = []
        total = 0
        for idref, _linear in book.spine:
            if len(parts) >= max_sections or total >= max_chars:
                break
            item = book.get_item_with_id(idref)
            if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
                continue
            soup = BeautifulSoup(item.get_content(), "html.parser")
            text = soup.get_text(separator="\n", strip=True)
            parts.append(text)
            total += len(text)
        return "\n\n".join(parts)[:max_chars]

    @staticmethod
    def _cover(book: epub.EpubBook) -> tuple[Optional[bytes], Optional[str]]:
        covers = list(book.get_items_of_type(ebooklib.ITEM_COVER))
        if covers:
            return covers[0].get_content(), covers[0].media_type

        for _value, attrs in book.get_metadata("OPF", "cover"):
            item = book.get_item_with_id(attrs.get("content", ""))
            if item is not None and item.media_type.startswith("image/"):
                return item.get_content(), item.media_type

        for item in book.get_items_of_type(ebooklib.ITEM_IMAGE):
            if "cover" in item.get_name().lower():
                return item.get_content(), item.media_type
        return None, None

    def _read_package_sync(self, content: bytes, sample_sections: int, sample_max_chars: int) -> EpubPackage:
        book = self._open(content)
        titles = self._values(book, "title")
        descriptions = self._values(book, "description")
        languages = self._values(book, "language")
        publishers = self._values(book, "publisher")
        dates = self._values(book, "date")
        cover_bytes, cover_media_type = self._cover(book)

        return EpubPackage(
            title=titles[0] if titles else None,
            creators=self._values(book, "creator"),
            description=descriptions[0] if descriptions else None,
            language=languages[0] if languages else None,
            publisher=publishers[0] if publishers else None,
            date=dates[0] if dates else None,
            identifiers=self._values(book, "identifier"),
            subjects=self._values(book, "subject"),
            cover_bytes=cover_bytes,
            cover_media_type=cover_media_type,
            sample_text=self._section_texts(book, sample_sections, sample_max_chars),
        )

    def _read_text_sync(self, content: bytes, max_sections: int, max_chars: int) -> str:
        return self._section_texts(self._open(content), max_sections, max_chars)
