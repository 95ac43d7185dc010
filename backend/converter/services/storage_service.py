"""Local filesystem object store with bucket semantics."""

import asyncio
import logging
from pathlib import Path
from urllib.parse import quote
from converter.config import settings
from converter.errors import StorageError

logger = logging.getLogger(__name__)


class StorageService:
    """Stores uploaded sources and conversion outputs as files under one root."""

    def __init__(self, root: str = None, public_base_url: str = None):
        self.root = Path(root or settings.STORAGE_DIR)
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        """
        Resolve an object key inside a bucket (security check).

        Args:
            bucket: Bucket name
            path: Object key relative to the bucket

        Returns:
            Absolute path of the object

        Raises:
            StorageError: If the key escapes the bucket
        """
        bucket_root = (self.root / bucket).resolve()
        try:
            target = (bucket_root / path).resolve()
        except (ValueError, RuntimeError) as e:
            raise StorageError(f"Invalid object path: {path}") from e

        if not target.is_relative_to(bucket_root) or target == bucket_root:
            raise StorageError(f"Invalid object path: {path}")
        return target

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str = None) -> str:
        """
        Write an object, replacing any existing one.

        Args:
            bucket: Bucket name
            path: Object key
            data: Object contents
            content_type: MIME type, recorded for logging only

        Returns:
            The object key
        """
        target = self._resolve(bucket, path)

        def _write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Could not store {bucket}/{path}: {e.strerror or e}") from e

        logger.info(f"Stored {bucket}/{path} ({len(data)} bytes, {content_type or 'unknown type'})")
        return path

    async def download(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {bucket}/{path}") from e
        except OSError as e:
            raise StorageError(f"Could not read {bucket}/{path}: {e.strerror or e}") from e

    async def delete(self, bucket: str, path: str) -> bool:
        target = self._resolve(bucket, path)
        if not target.exists():
            return False
        await asyncio.to_thread(target.unlink)
        logger.info(f"Deleted {bucket}/{path}")
        return True

    def local_path(self, bucket: str, path: str) -> Path:
        """Filesystem path of an existing object, for streaming responses."""
        target = self._resolve(bucket, path)
        if not target.is_file():
            raise StorageError(f"Object not found: {bucket}/{path}")
        return target

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/api/files/{quote(bucket)}/{quote(path)}"


# Global storage service instance
storage_service = StorageService()
