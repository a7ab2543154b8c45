"""
Abstract base class for blob storage backends.

Artifacts and manifests are stored under slash-separated keys, e.g.
``releases/stable/1.4.0/macos/arm64/app-1.4.0-arm64-macos.dmg``. Backends
implement four primitives; recursive prefix deletion is built on top of
them here so every backend gets the same behaviour.

Design Pattern: Strategy pattern for pluggable storage backends
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from publisher.src.utils.logging_config import get_logger


logger = get_logger("storage")


@dataclass
class BlobEntry:
    """
    One immediate child of a listed prefix.

    Attributes:
        name: Last path segment
        path: Full key relative to the store root (no trailing slash)
        is_folder: True for a sub-prefix, False for an object
        size: Object size in bytes (0 for folders)
    """
    name: str
    path: str
    is_folder: bool = False
    size: int = 0


def normalize_key(path: str) -> str:
    """Strip surrounding slashes and collapse empty segments."""
    return "/".join(part for part in path.split("/") if part)


class BlobStore(ABC):
    """
    Abstract blob store.

    Methods:
        upload(): Store bytes under a key
        upload_file(): Stream a local file to a key
        list(): List immediate children of a prefix
        remove(): Delete objects by key
        read(): Fetch the bytes of a key
        public_url(): URL a client downloads a key from
        delete_prefix(): Recursively delete everything under a prefix
    """

    @abstractmethod
    def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> str:
        """
        Store *data* at *path*.

        Returns:
            Normalised key the data was written to

        Raises:
            StorageError: On backend failure, or when the key exists and
                overwrite is False
        """

    @abstractmethod
    def upload_file(
        self,
        path: str,
        source: Path,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> str:
        """
        Stream the local file *source* to *path* without loading it into memory.

        Returns:
            Normalised key the file was written to

        Raises:
            StorageError: On backend failure, or when the key exists and
                overwrite is False
        """

    @abstractmethod
    def list(self, prefix: str) -> List[BlobEntry]:
        """
        List the immediate children of *prefix*.

        A missing prefix lists as empty.

        Raises:
            StorageError: On backend failure
        """

    @abstractmethod
    def remove(self, paths: Sequence[str]) -> None:
        """
        Delete objects. Missing keys are ignored.

        Raises:
            StorageError: On backend failure
        """

    @abstractmethod
    def read(self, path: str) -> bytes:
        """
        Return the bytes stored at *path*.

        Raises:
            StorageError: If the object is missing or the backend fails
        """

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Public download URL of *path*."""

    def delete_prefix(self, prefix: str) -> int:
        """
        Delete every object under *prefix*, descending into sub-folders.

        Idempotent: deleting an empty or missing prefix removes nothing.

        Returns:
            Number of objects removed

        Raises:
            StorageError: On backend failure
        """
        pending = [normalize_key(prefix)]
        removed = 0
        while pending:
            current = pending.pop()
            files = []
            for entry in self.list(current):
                if entry.is_folder:
                    pending.append(entry.path)
                else:
                    files.append(entry.path)
            if files:
                self.remove(files)
                removed += len(files)

        logger.info(
            f"Deleted {removed} object(s) under {prefix}",
            extra={"event": "storage.delete_prefix", "prefix": prefix, "count": removed}
        )
        return removed
