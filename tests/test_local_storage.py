"""
Tests for the local-disk storage backend.
"""
import asyncio
import json

import pytest

from core.exceptions import StorageError
from storage.local_storage import LocalStorage, sanitize_key


def test_put_bytes_writes_and_resolves(tmp_path):
    storage = LocalStorage(root=tmp_path)
    stored = asyncio.run(storage.put_bytes("Script_abc/Imp_Evil_123.png", b"png-bytes", "image/png"))

    assert (tmp_path / "Script_abc" / "Imp_Evil_123.png").read_bytes() == b"png-bytes"
    assert stored.storageKey == "local-mirror/Script_abc/Imp_Evil_123.png"
    assert stored.publicUrl == "/local-mirror/Script_abc/Imp_Evil_123.png"
    assert not list(tmp_path.rglob("*.tmp"))


def test_public_base_url_makes_absolute_urls(tmp_path):
    storage = LocalStorage(root=tmp_path, public_base_url="http://localhost:3000/")
    assert storage.public_url("/a/b.png") == "http://localhost:3000/local-mirror/a/b.png"


def test_exists_checks_disk(tmp_path):
    storage = LocalStorage(root=tmp_path)

    async def scenario():
        before = await storage.exists("a/b.png")
        await storage.put_bytes("a/b.png", b"x")
        return before, await storage.exists("a/b.png")

    assert asyncio.run(scenario()) == (False, True)


def test_empty_payload_only_resolves(tmp_path):
    storage = LocalStorage(root=tmp_path)
    stored = asyncio.run(storage.put_bytes("a/b.png", b""))
    assert stored.publicUrl == "/local-mirror/a/b.png"
    assert not (tmp_path / "a" / "b.png").exists()


def test_put_json_is_pretty_utf8(tmp_path):
    storage = LocalStorage(root=tmp_path)
    asyncio.run(storage.put_json("p/original.json", [{"id": "imp", "name": "Démon"}]))
    text = (tmp_path / "p" / "original.json").read_text(encoding="utf-8")
    assert "Démon" in text
    assert json.loads(text) == [{"id": "imp", "name": "Démon"}]


def test_overwrite_is_idempotent(tmp_path):
    storage = LocalStorage(root=tmp_path)

    async def scenario():
        await storage.put_bytes("k.bin", b"first")
        return await storage.put_bytes("k.bin", b"second")

    stored = asyncio.run(scenario())
    assert (tmp_path / "k.bin").read_bytes() == b"second"
    assert stored.storageKey == "local-mirror/k.bin"


def test_descriptors(tmp_path):
    storage = LocalStorage(root=tmp_path)
    assert storage.mode == "local"
    assert storage.bucket is None
    assert storage.local_base_path == "/local-mirror"


@pytest.mark.parametrize("key", ["", "/", "../etc/passwd", "a/../../b"])
def test_rejects_bad_keys(key):
    with pytest.raises(StorageError):
        sanitize_key(key)


def test_sanitize_key_normalises_separators():
    assert sanitize_key("\\a\\b.png") == "a/b.png"
