"""
Filesystem blob store.

Keys map to files below a root directory. Used for development,
single-host deployments served by a static web server, and tests.
"""

import shutil
from pathlib import Path
from typing import List, Sequence

from publisher.src.services.exceptions import StorageError
from publisher.src.storage.base import BlobEntry, BlobStore, logger, normalize_key


class LocalBlobStore(BlobStore):
    """
    Blob store rooted at a local directory.

    Args:
        root: Directory holding the keys (created on first write)
        base_url: Public URL the root is served from; empty means file:// URLs
    """

    def __init__(self, root: str, base_url: str = ""):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        key = normalize_key(path)
        target = (self.root / key).resolve() if key else self.root
        if target != self.root and self.root not in target.parents:
            raise StorageError(f"Path escapes storage root: {path}", path=path)
        return target

    def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> str:
        target = self._resolve(path)
        if target.exists() and not overwrite:
            raise StorageError(f"Object already exists: {path}", path=path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}", path=path)

        logger.debug(
            f"Stored {len(data)} bytes at {path}",
            extra={"event": "storage.upload", "path": path, "content_type": content_type}
        )
        return normalize_key(path)

    def upload_file(
        self,
        path: str,
        source: Path,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> str:
        target = self._resolve(path)
        if target.exists() and not overwrite:
            raise StorageError(f"Object already exists: {path}", path=path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as e:
            raise StorageError(f"Failed to copy {source} to {path}: {e}", path=path)

        logger.debug(
            f"Copied {source} to {path}",
            extra={"event": "storage.upload", "path": path, "content_type": content_type}
        )
        return normalize_key(path)

    def list(self, prefix: str) -> List[BlobEntry]:
        directory = self._resolve(prefix)
        if not directory.is_dir():
            return []

        key_prefix = normalize_key(prefix)
        entries = []
        try:
            for child in sorted(directory.iterdir()):
                key = f"{key_prefix}/{child.name}" if key_prefix else child.name
                if child.is_dir():
                    entries.append(BlobEntry(name=child.name, path=key, is_folder=True))
                else:
                    entries.append(
                        BlobEntry(name=child.name, path=key, size=child.stat().st_size)
                    )
        except OSError as e:
            raise StorageError(f"Failed to list {prefix}: {e}", path=prefix)
        return entries

    def remove(self, paths: Sequence[str]) -> None:
        for path in paths:
            target = self._resolve(path)
            try:
                if target.is_file():
                    target.unlink()
            except OSError as e:
                raise StorageError(f"Failed to remove {path}: {e}", path=path)
            self._prune_empty_parents(target.parent)

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                # not empty
                return
            directory = directory.parent

    def public_url(self, path: str) -> str:
        key = normalize_key(path)
        if self.base_url:
            return f"{self.base_url}/{key}"
        return (self.root / key).as_uri()

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"Object not found: {path}", path=path)
        return target.read_bytes()
