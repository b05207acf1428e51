"""
Shared pytest fixtures for Script Asset Mirror tests.

Provides:
- An in-memory storage backend
- A scripted fetcher that answers from a callable
- Generated PNG bytes for thumbnail tests
- Plan factories
"""
import asyncio
import io
import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from PIL import Image

from data.models import AssetPlan, EntryType, StorageMode, StoredObject
from download.fetcher import FetchResponse
from storage.base import StorageBackend, encode_json


class InMemoryStorage(StorageBackend):
    """Dict-backed backend recording every real upload"""

    mode = StorageMode.LOCAL

    def __init__(self, base_url: str = "https://cdn.test"):
        self.base_url = base_url
        self.objects: Dict[str, Tuple[bytes, Optional[str], Optional[str]]] = {}
        self.uploads: List[str] = []

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def put_bytes(self, key, content, content_type=None, cache_control=None) -> StoredObject:
        if content:
            self.objects[key] = (content, content_type, cache_control)
            self.uploads.append(key)
        return StoredObject(storageKey=key, publicUrl=self.public_url(key))

    async def put_json(self, key: str, value: Any) -> StoredObject:
        return await self.put_bytes(key, encode_json(value), 'application/json', 'no-cache')

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def load_json(self, key: str) -> Any:
        return json.loads(self.objects[key][0])

    def keys_ending(self, suffix: str) -> List[str]:
        return [key for key in self.objects if key.endswith(suffix)]


Outcome = Any
Responder = Callable[[str, Optional[str]], Outcome]


class ScriptedFetcher:
    """
    Stand-in for AssetFetcher

    The responder gets (url, proxy) and returns a FetchResponse, an exception
    instance to raise, or a coroutine resolving to either.
    """

    def __init__(self, responder: Responder):
        self.responder = responder
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.closed = False

    async def get(self, url, proxy=None, timeout=None, cancel_event=None) -> FetchResponse:
        self.calls.append((url, proxy))
        outcome = self.responder(url, proxy)
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


def ok_response(body: bytes, content_type: str = "image/png", url: str = "", proxy: Optional[str] = None) -> FetchResponse:
    return FetchResponse(url=url, status=200, headers={"Content-Type": content_type}, body=body, proxy=proxy)


def status_response(status: int) -> FetchResponse:
    return FetchResponse(url="", status=status, headers={}, body=b"")


def make_png(size: Tuple[int, int] = (300, 200), color=(200, 30, 30, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def character_plan(index: int = 0, url: str = "https://img.test/imp.png", label: str = "Evil",
                   variant_index: Optional[int] = 0, name: str = "Imp") -> AssetPlan:
    return AssetPlan(
        scriptIndex=index,
        entryType=EntryType.CHARACTER,
        entryId=name.lower(),
        entryName=name,
        field="image",
        originalUrl=url,
        fileBaseName=f"{name}_{label}",
        variantIndex=variant_index,
        variantLabel=label,
    )


def meta_plan(index: int = 0, url: str = "https://img.test/logo.png", field: str = "logo",
              label: str = "Logo") -> AssetPlan:
    return AssetPlan(
        scriptIndex=index,
        entryType=EntryType.META,
        entryId="meta",
        entryName="Test Script",
        field=field,
        originalUrl=url,
        fileBaseName=f"Test_Script_{label}",
        variantLabel=label,
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A 300x200 opaque PNG"""
    return make_png()


@pytest.fixture
def memory_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def scenario_script() -> List[Dict[str, Any]]:
    """Meta entry with a logo plus one single-image demon"""
    return [
        {"id": "meta", "name": "Test Script", "logo": "http://h/l.png"},
        {"id": "imp", "name": "Imp", "team": "demon", "image": "http://h/imp.png"},
    ]
