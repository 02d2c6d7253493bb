"""Storage backends for quality incident media files."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    path: str
    file_name: str
    url: str


class MediaStorage(ABC):
    """Interface for binary media storage. The workflow only keeps references."""

    @abstractmethod
    def save(self, folder: str, file_name: str, content: bytes) -> StoredFile:
        """Persist content and return its reference."""

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete a stored file. Returns False if it was already gone."""

    @abstractmethod
    def public_url(self, folder: str, file_name: str) -> str:
        """URL under which clients can fetch the file."""


class LocalMediaStorage(MediaStorage):
    """
    Stores files on local disk as <root>/<folder>/<file_name>.

    Files are served by the API under `url_prefix` (see the static mount in main).
    """

    def __init__(self, root: str | Path, url_prefix: str = "/uploads/quality") -> None:
        self.root = Path(root).resolve()
        self.url_prefix = url_prefix.rstrip("/")

    def _resolve(self, folder: str, file_name: str) -> Path:
        target = (self.root / folder / file_name).resolve()
        if self.root not in target.parents:
            raise ValueError(f"Refusing to write outside media root: {file_name}")
        return target

    def save(self, folder: str, file_name: str, content: bytes) -> StoredFile:
        target = self._resolve(folder, file_name)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.info("Stored media file %s (%d bytes)", target, len(content))
        return StoredFile(path=str(target), file_name=file_name, url=self.public_url(folder, file_name))

    def delete(self, path: str) -> bool:
        target = Path(path)
        if not target.exists():
            logger.warning("Media file already missing: %s", path)
            return False
        target.unlink()
        logger.info("Deleted media file %s", path)
        return True

    def public_url(self, folder: str, file_name: str) -> str:
        return f"{self.url_prefix}/{folder}/{file_name}"
