"""
Local Disk Storage
Mirrors objects into a directory served under /local-mirror/
"""
import os
import uuid
from pathlib import Path, PurePosixPath
from typing import Any, Optional, Union

import aiofiles
import aiofiles.os

from core.config import config
from core.exceptions import StorageError
from data.models import StorageMode, StoredObject
from utils.logger import get_logger
from .base import StorageBackend, encode_json

STORAGE_KEY_ROOT = "local-mirror"


def sanitize_key(key: str) -> str:
    """Strip leading slashes, normalise separators, reject empty and relative keys"""
    trimmed = key.replace('\\', '/').lstrip('/')
    if not trimmed:
        raise StorageError("Local storage key cannot be empty", component='local_storage')
    if '..' in trimmed:
        raise StorageError("Local storage key cannot contain relative segments", component='local_storage')
    return trimmed


class LocalStorage(StorageBackend):
    """
    Local-disk storage backend

    Features:
    - Atomic writes (temp file + rename)
    - Existence checks on disk so re-runs reuse earlier files
    - Public URLs relative to the site, or absolute when a base URL is known
    """

    mode = StorageMode.LOCAL

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        public_base_url: Optional[str] = None,
        public_prefix: Optional[str] = None,
        json_cache_control: Optional[str] = None
    ):
        self.logger = get_logger("local_storage")
        self.root = Path(root) if root is not None else config.local_root
        self.public_base_url = public_base_url.rstrip('/') if public_base_url else None
        self.public_prefix = '/' + (public_prefix or config.local_public_prefix).strip('/') + '/'
        self.json_cache_control = json_cache_control or config.json_cache_control

        self.root.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"LocalStorage initialized - Root: {self.root}")

    @property
    def local_base_path(self) -> Optional[str]:
        return self.public_prefix.rstrip('/')

    def path_for(self, key: str) -> Path:
        return self.root.joinpath(*PurePosixPath(sanitize_key(key)).parts)

    def public_url(self, key: str) -> str:
        url = f"{self.public_prefix}{sanitize_key(key)}"
        return f"{self.public_base_url}{url}" if self.public_base_url else url

    def _stored(self, key: str) -> StoredObject:
        sanitized = sanitize_key(key)
        return StoredObject(
            storageKey=f"{STORAGE_KEY_ROOT}/{sanitized}",
            publicUrl=self.public_url(sanitized)
        )

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self.path_for(key))

    async def put_bytes(
        self,
        key: str,
        content: bytes,
        content_type: Optional[str] = None,
        cache_control: Optional[str] = None
    ) -> StoredObject:
        if not content:
            return self._stored(key)

        target = self.path_for(key)
        temp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(temp_path, 'wb') as file:
                await file.write(content)
            await aiofiles.os.replace(temp_path, target)
        except OSError as e:
            if temp_path.exists():
                os.unlink(temp_path)
            raise StorageError(f"Failed to write {target}: {e}", component='local_storage') from e

        self.logger.debug(f"Wrote {len(content)} bytes to {target}")
        return self._stored(key)

    async def put_json(self, key: str, value: Any) -> StoredObject:
        return await self.put_bytes(key, encode_json(value), 'application/json', self.json_cache_control)
