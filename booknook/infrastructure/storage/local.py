"""Local file storage implementation."""
import logging
import mimetypes
import os
import uuid
from pathlib import Path
from typing import Optional

import aiofiles

from booknook.domain.entities import FileReference
from booknook.domain.repositories import IStorageService, ProgressCallback

logger = logging.getLogger(__name__)

CHUNK_SIZE = 256 * 1024


class LocalStorageService(IStorageService):
    """Blob storage on the local filesystem, laid out as ``books/<owner>/<uuid>.<ext>``."""

    def __init__(self, base_path: str = "./storage", public_base_url: str = "http://localhost:8000/files"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    async def save_file(
        self,
        file_content: bytes,
        filename: str,
        owner_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FileReference:
        extension = Path(filename).suffix.lower() or ".epub"
        relative = Path("books") / owner_id / f"{uuid.uuid4()}{extension}"
        full_path = self.base_path / relative
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            total = len(file_content)
            written = 0
            async with aiofiles.open(full_path, "wb") as f:
                for start in range(0, total, CHUNK_SIZE):
                    chunk = file_content[start:start + CHUNK_SIZE]
                    await f.write(chunk)
                    written += len(chunk)
                    if on_progress:
                        on_progress(written / total * 100)
            if on_progress and total == 0:
                on_progress(100.0)

            logger.info(f"File saved: {relative}, size: {total} bytes")
            return FileReference(
                path=relative.as_posix(),
                download_url=f"{self.public_base_url}/{relative.as_posix()}",
                size=total,
                mime_type=mimetypes.guess_type(filename)[0] or "application/epub+zip",
                file_name=filename,
            )
        except Exception as e:
            logger.error(f"Failed to save file {filename}: {str(e)}", exc_info=True)
            raise

    async def get_file(self, file_path: str) -> bytes:
        try:
            full_path = self.base_path / file_path
            async with aiofiles.open(full_path, "rb") as f:
                content = await f.read()
            logger.debug(f"File retrieved: {file_path}, size: {len(content)} bytes")
            return content
        except FileNotFoundError:
            logger.error(f"File not found: {file_path}")
            raise
        except Exception as e:
            logger.error(f"Failed to read file {file_path}: {str(e)}", exc_info=True)
            raise

    async def delete_file(self, file_path: str) -> bool:
        full_path = self.base_path / file_path
        try:
            os.remove(full_path)
            logger.info(f"File deleted: {file_path}")
            return True
        except FileNotFoundError:
            logger.warning(f"File not found for deletion: {file_path}")
            return False
        except Exception as e:
            logger.error(f"Failed to delete file {file_path}: {str(e)}", exc_info=True)
            raise

    async def save_cover(self, content: bytes, media_type: str, owner_id: str) -> str:
        extension = mimetypes.guess_extension(media_type or "") or ".jpg"
        relative = Path("covers") / owner_id / f"{uuid.uuid4()}{extension}"
        full_path = self.base_path / relative
        full_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(full_path, "wb") as f:
            await f.write(content)
        logger.info(f"Cover saved: {relative}")
        return f"{self.public_base_url}/{relative.as_posix()}"
