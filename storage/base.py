"""
Storage Facade
Capability interface shared by the bucket and local-disk backends
"""
import json
from abc import ABC, abstractmethod
from typing import Any, Optional

from data.models import StorageMode, StoredObject


def encode_json(value: Any) -> bytes:
    """Pretty JSON payload; strings are stored verbatim"""
    payload = value if isinstance(value, str) else json.dumps(value, indent=2, ensure_ascii=False)
    return payload.encode('utf-8')


class StorageBackend(ABC):
    """
    Where mirrored assets and run documents are written

    Implementations must be safe for concurrent use by several workers and
    idempotent for identical keys. put_bytes with an empty payload does not
    write: it only resolves the public URL of an already-known key.
    """

    mode: StorageMode

    @property
    def bucket(self) -> Optional[str]:
        return None

    @property
    def local_base_path(self) -> Optional[str]:
        return None

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """True when an object is already stored under key"""

    @abstractmethod
    async def put_bytes(
        self,
        key: str,
        content: bytes,
        content_type: Optional[str] = None,
        cache_control: Optional[str] = None
    ) -> StoredObject:
        """Store bytes under key (or just resolve the URL for an empty payload)"""

    @abstractmethod
    async def put_json(self, key: str, value: Any) -> StoredObject:
        """Store a JSON document under key"""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Public URL for key"""
