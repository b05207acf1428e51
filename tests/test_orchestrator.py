"""
End-to-end tests for a mirroring run.

The HTTP side runs against a local aiohttp server; storage is either the real
local-disk backend under tmp_path or the in-memory one.
"""
import asyncio
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.config import Config
from core.exceptions import AssetDownloadFailed, NoAssetsFound, ValidationError
from orchestrator import make_storage_prefix, process_script_upload, resolve_script_name
from storage.local_storage import LocalStorage
from utils.helpers import hash_content
from conftest import InMemoryStorage, ScriptedFetcher, make_png, ok_response


class StaticProxySource:
    def __init__(self, proxies):
        self.proxies = list(proxies)
        self.requested = []

    async def list(self, source_url=None):
        self.requested.append(source_url)
        return list(self.proxies)


def offline_settings(tmp_path):
    return Config(config_dir=str(tmp_path / "no-config"), environ={})


def image_handler(body, content_type="image/png"):
    async def handler(request):
        return web.Response(body=body, content_type=content_type)
    return handler


def missing_handler():
    async def handler(request):
        return web.Response(status=404)
    return handler


def scenario_document(base):
    return [
        {"id": "meta", "name": "Test Script", "logo": f"{base}/l.png"},
        {"id": "imp", "name": "Imp", "team": "demon", "image": f"{base}/imp.png"},
    ]


def with_server(routes, scenario):
    async def runner():
        app = web.Application()
        for path, handler in routes.items():
            app.router.add_get(path, handler)
        server = TestServer(app)
        await server.start_server()
        try:
            return await scenario(f"http://{server.host}:{server.port}")
        finally:
            await server.close()

    return asyncio.run(runner())


def test_scenario_end_to_end(tmp_path, png_bytes):
    logo_bytes = make_png((400, 100), (10, 10, 200, 255))
    routes = {"/l.png": image_handler(logo_bytes), "/imp.png": image_handler(png_bytes)}
    storage = LocalStorage(root=tmp_path / "mirror")
    events = []

    async def scenario(base):
        script_text = json.dumps(scenario_document(base))
        result = await process_script_upload(
            script_text, on_event=events.append, storage=storage, settings=offline_settings(tmp_path)
        )
        return script_text, result

    script_text, result = with_server(routes, scenario)
    prefix = f"Test_Script_{hash_content(script_text)}"

    assert result.scriptName == "Test Script"
    assert result.scriptSlug == "Test_Script"
    assert result.storagePrefix == prefix
    assert result.storageMode == "local"
    assert result.localBasePath == "/local-mirror"
    assert result.proxyEnabled is False
    assert result.proxiesUsed == []

    logo, imp, thumbnail = result.assets
    assert [a.variantLabel for a in result.assets] == ["Logo", "Evil", "Evil (256px)"]
    assert logo.storageKey == f"local-mirror/{prefix}/Test_Script_Logo_{hash_content(logo_bytes)}.png"
    assert thumbnail.publicUrl.endswith("_256.png")

    full, preview = result.rewrittenScript, result.rewritten256Script
    assert full[0]["logo"] == logo.publicUrl
    assert full[1]["image"] == imp.publicUrl
    assert preview[0]["logo"] == full[0]["logo"]
    assert preview[1]["image"] == thumbnail.publicUrl

    mirror = tmp_path / "mirror" / prefix
    manifest = json.loads((mirror / "manifest.json").read_text(encoding="utf-8"))
    assert len(manifest) == 3
    assert "variantIndex" not in manifest[0]
    assert json.loads((mirror / "original.json").read_text(encoding="utf-8")) == json.loads(script_text)
    assert json.loads((mirror / "rewritten.json").read_text(encoding="utf-8")) == full
    assert json.loads((mirror / "rewritten_256.json").read_text(encoding="utf-8")) == preview
    assert result.manifestKey == f"local-mirror/{prefix}/manifest.json"
    assert result.rewritten256ScriptUrl == f"/local-mirror/{prefix}/rewritten_256.json"

    types = [event.type for event in events]
    assert types[0] == "planSummary"
    assert events[0].totalAssets == 2
    assert types.count("assetStart") == 2
    assert types.count("assetStored") == 2


def test_rerun_reuses_every_object(tmp_path, png_bytes):
    routes = {"/l.png": image_handler(make_png((64, 64))), "/imp.png": image_handler(png_bytes)}
    storage = LocalStorage(root=tmp_path / "mirror")

    async def scenario(base):
        script_text = json.dumps(scenario_document(base))
        first = await process_script_upload(script_text, storage=storage, settings=offline_settings(tmp_path))
        second = await process_script_upload(script_text, storage=storage, settings=offline_settings(tmp_path))
        return first, second

    first, second = with_server(routes, scenario)

    assert second.storagePrefix == first.storagePrefix
    assert [a.storageKey for a in second.assets] == [a.storageKey for a in first.assets]
    assert first.upload_count == 3
    assert second.upload_count == 0
    assert all(a.size == 0 for a in second.assets)


def test_failed_asset_writes_no_outputs(tmp_path, png_bytes):
    routes = {"/l.png": image_handler(png_bytes), "/imp.png": missing_handler()}
    storage = LocalStorage(root=tmp_path / "mirror")

    async def scenario(base):
        await process_script_upload(
            json.dumps(scenario_document(base)), storage=storage, settings=offline_settings(tmp_path)
        )

    with pytest.raises(AssetDownloadFailed, match="imp.png.*status 404"):
        with_server(routes, scenario)

    assert list((tmp_path / "mirror").rglob("*.json")) == []


def test_requested_name_overrides_meta_name(tmp_path, png_bytes):
    storage = InMemoryStorage()
    script_text = json.dumps(scenario_document("https://img.test"))
    result = asyncio.run(process_script_upload(
        script_text, "  My Upload  ",
        storage=storage,
        fetcher=ScriptedFetcher(lambda url, proxy: ok_response(png_bytes)),
        settings=offline_settings(tmp_path)
    ))

    assert result.scriptName == "My Upload"
    assert result.storagePrefix == f"My_Upload_{hash_content(script_text)}"
    # The meta segment still follows the meta entry's own name
    assert result.assets[0].fileBaseName == "Test_Script_Logo"
    assert storage.load_json(f"{result.storagePrefix}/original.json") == json.loads(script_text)


def test_proxy_mode_uses_the_pool(tmp_path, png_bytes):
    fetcher = ScriptedFetcher(lambda url, proxy: ok_response(png_bytes))
    source = StaticProxySource(["http://10.0.0.1:8080"])
    result = asyncio.run(process_script_upload(
        json.dumps(scenario_document("https://img.test")),
        use_proxy=True,
        storage=InMemoryStorage(),
        fetcher=fetcher,
        proxy_source=source,
        settings=offline_settings(tmp_path)
    ))

    assert result.proxyEnabled is True
    assert result.proxiesUsed == ["http://10.0.0.1:8080"]
    assert all(proxy == "http://10.0.0.1:8080" for _, proxy in fetcher.calls)
    assert len(source.requested) == 1


def test_empty_proxy_pool_falls_back_to_direct(tmp_path, png_bytes):
    fetcher = ScriptedFetcher(lambda url, proxy: ok_response(png_bytes))
    result = asyncio.run(process_script_upload(
        json.dumps(scenario_document("https://img.test")),
        use_proxy=True,
        storage=InMemoryStorage(),
        fetcher=fetcher,
        proxy_source=StaticProxySource([]),
        settings=offline_settings(tmp_path)
    ))

    assert result.proxyEnabled is False
    assert all(proxy is None for _, proxy in fetcher.calls)


def test_proxy_list_not_fetched_when_not_requested(tmp_path, png_bytes):
    source = StaticProxySource(["http://10.0.0.1:8080"])
    asyncio.run(process_script_upload(
        json.dumps(scenario_document("https://img.test")),
        storage=InMemoryStorage(),
        fetcher=ScriptedFetcher(lambda url, proxy: ok_response(png_bytes)),
        proxy_source=source,
        settings=offline_settings(tmp_path)
    ))
    assert source.requested == []


def test_invalid_documents_fail_before_fetching(tmp_path):
    fetcher = ScriptedFetcher(lambda url, proxy: ok_response(b"x"))
    with pytest.raises(ValidationError):
        asyncio.run(process_script_upload("{}", fetcher=fetcher, storage=InMemoryStorage(),
                                          settings=offline_settings(tmp_path)))
    with pytest.raises(NoAssetsFound):
        asyncio.run(process_script_upload('["imp", {"id": "x", "image": "x.png"}]', fetcher=fetcher,
                                          storage=InMemoryStorage(), settings=offline_settings(tmp_path)))
    assert fetcher.calls == []


def test_name_resolution():
    assert resolve_script_name("Given", {"name": "Meta"}) == "Given"
    assert resolve_script_name(None, {"name": "Meta"}) == "Meta"
    assert resolve_script_name(None, {"name": ""}) == "Custom Script"
    assert resolve_script_name(None, None) == "Custom Script"


def test_storage_prefix_depends_on_bytes_and_name():
    assert make_storage_prefix("[1]", "Test Script") == f"Test_Script_{hash_content('[1]')}"
    assert make_storage_prefix("[1]", "???") == f"Custom_Script_{hash_content('[1]')}"
    assert make_storage_prefix("[1]", "A") != make_storage_prefix("[ 1]", "A")
