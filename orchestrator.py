"""
Script Asset Mirror - Run Orchestrator

Sequences one mirroring run: validate -> plan -> proxy pool -> coordinated
download -> rewrite -> persist manifest and documents. Progress events are
forwarded to the caller as they happen.
"""
import asyncio
import time
from typing import Callable, List, Optional, Union

from core.config import Config, config as default_config
from core.exceptions import MirrorError
from data.models import PlanSummaryEvent, ProcessedScriptResult, ProcessingEvent
from data.planner import AssetPlanner
from data.rewriter import rewrite_script
from data.validator import DataValidator
from download.coordinator import DownloadCoordinator
from download.fetcher import AssetFetcher
from download.proxy_pool import ProxyPoolSource
from download.variants import ThumbnailGenerator
from storage.base import StorageBackend
from storage.factory import create_storage
from utils.helpers import format_duration, hash_content, to_friendly_segment
from utils.logger import setup_logger

DEFAULT_SCRIPT_NAME = "Custom Script"
DEFAULT_SCRIPT_SLUG = "Custom_Script"
PLANNER_FALLBACK_NAME = "Script"

MANIFEST_FILE = "manifest.json"
ORIGINAL_FILE = "original.json"
REWRITTEN_FILE = "rewritten.json"
REWRITTEN_256_FILE = "rewritten_256.json"


def make_storage_prefix(script_content: Union[str, bytes], script_name: str) -> str:
    """Deterministic per (raw document bytes, resolved name)"""
    return f"{to_friendly_segment(script_name, DEFAULT_SCRIPT_SLUG)}_{hash_content(script_content)}"


def resolve_script_name(requested_name: Optional[str], meta_entry: Optional[dict]) -> str:
    if requested_name:
        return requested_name
    if meta_entry and isinstance(meta_entry.get("name"), str) and meta_entry["name"]:
        return meta_entry["name"]
    return DEFAULT_SCRIPT_NAME


class MirrorOrchestrator:
    """
    Composition root for a mirroring run

    Features:
    - Dependency injection of storage, fetcher and proxy source (tests swap them)
    - Storage backend selected once per run from configuration
    - Run-scoped fetcher, closed when the run ends
    - Fail-fast: any asset failure aborts the run before outputs are written
    """

    def __init__(
        self,
        settings: Optional[Config] = None,
        storage: Optional[StorageBackend] = None,
        fetcher: Optional[AssetFetcher] = None,
        proxy_source: Optional[ProxyPoolSource] = None,
        thumbnails: Optional[ThumbnailGenerator] = None
    ):
        self.config = settings or default_config
        self.logger = setup_logger("asset_mirror", self.config.log_level, self.config.log_file)
        self.storage = storage
        self.fetcher = fetcher
        self.proxy_source = proxy_source
        self.thumbnails = thumbnails
        self.validator = DataValidator()
        self.planner = AssetPlanner()

    async def process(
        self,
        script_content: Union[str, bytes],
        requested_name: Optional[str] = None,
        on_event: Optional[Callable[[ProcessingEvent], None]] = None,
        use_proxy: Optional[bool] = None,
        force_reprocess: bool = False,
        public_base_url: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ProcessedScriptResult:
        """
        Mirror every image referenced by a script

        Args:
            script_content: Raw uploaded script (JSON text)
            requested_name: Display name override
            on_event: Progress sink, called synchronously per event
            use_proxy: Route through the proxy pool (None: configuration default)
            force_reprocess: Skip existence checks and re-upload everything
            public_base_url: Origin used for local-mirror URLs
            cancel_event: Abort signal for in-flight fetches

        Returns:
            ProcessedScriptResult

        Raises:
            ValidationError, NoAssetsFound, AssetDownloadFailed, StorageError, RunCancelled
        """
        emit = on_event or (lambda event: None)
        started = time.monotonic()
        requested_name = requested_name.strip() if isinstance(requested_name, str) and requested_name.strip() else None

        script = self.validator.parse_script(script_content)
        plans, meta_entry = self.planner.collect(script, requested_name or PLANNER_FALLBACK_NAME)

        script_name = resolve_script_name(requested_name, meta_entry)
        script_slug = to_friendly_segment(script_name, DEFAULT_SCRIPT_SLUG)
        prefix = make_storage_prefix(script_content, script_name)
        self.logger.info(f"[START] '{script_name}' -> {prefix} ({len(plans)} assets)")
        self.logger.debug(f"[CONFIG] {self.config.get_config_summary()}")
        emit(PlanSummaryEvent(totalAssets=len(plans), scriptName=script_name))

        storage = self.storage or create_storage(self.config, public_base_url)

        proxy_requested = self.config.proxy_enabled if use_proxy is None else bool(use_proxy)
        proxy_pool: List[str] = []
        if proxy_requested:
            source = self.proxy_source or ProxyPoolSource(timeout=self.config.proxy_list_timeout)
            proxy_pool = await source.list(self.config.proxy_list_url)
            if not proxy_pool:
                self.logger.warning("US proxy mode requested, but no proxies were available in the fetched list.")

        fetcher = self.fetcher or AssetFetcher(timeout=self.config.request_timeout, user_agent=self.config.user_agent)
        coordinator = DownloadCoordinator(
            storage=storage,
            fetcher=fetcher,
            prefix=prefix,
            proxy_requested=proxy_requested,
            proxy_pool=proxy_pool,
            force_reprocess=force_reprocess,
            on_event=emit,
            thumbnails=self.thumbnails,
            cancel_event=cancel_event,
            timeout=self.config.request_timeout,
            max_proxy_attempts=self.config.max_proxy_attempts,
            direct_concurrency=self.config.direct_concurrency,
            proxy_concurrency=self.config.proxy_concurrency,
            cache_control=self.config.asset_cache_control
        )
        try:
            assets = await coordinator.run(plans)
        except MirrorError as e:
            self.logger.error(f"[FAILED] '{script_name}': {e}")
            raise
        finally:
            if self.fetcher is None:
                await fetcher.close()

        rewritten, rewritten_256 = rewrite_script(script, assets)

        manifest, original, full, preview = await asyncio.gather(
            storage.put_json(f"{prefix}/{MANIFEST_FILE}", [asset.to_manifest_row() for asset in assets]),
            storage.put_json(f"{prefix}/{ORIGINAL_FILE}", script),
            storage.put_json(f"{prefix}/{REWRITTEN_FILE}", rewritten),
            storage.put_json(f"{prefix}/{REWRITTEN_256_FILE}", rewritten_256),
        )

        result = ProcessedScriptResult(
            scriptName=script_name,
            scriptSlug=script_slug,
            storagePrefix=prefix,
            storageMode=storage.mode,
            bucket=storage.bucket,
            localBasePath=storage.local_base_path,
            manifestKey=manifest.storageKey,
            manifestUrl=manifest.publicUrl,
            originalScriptKey=original.storageKey,
            originalScriptUrl=original.publicUrl,
            rewrittenScriptKey=full.storageKey,
            rewrittenScriptUrl=full.publicUrl,
            rewritten256ScriptKey=preview.storageKey,
            rewritten256ScriptUrl=preview.publicUrl,
            assets=assets,
            rewrittenScript=rewritten,
            rewritten256Script=rewritten_256,
            proxyEnabled=proxy_requested and len(proxy_pool) > 0,
            proxiesUsed=sorted(coordinator.proxies_used),
        )

        self.logger.info(
            f"[DONE] '{script_name}': {len(assets)} object(s), {result.upload_count} uploaded, "
            f"in {format_duration(time.monotonic() - started)}"
        )
        return result


async def process_script_upload(
    script_content: Union[str, bytes],
    requested_name: Optional[str] = None,
    *,
    on_event: Optional[Callable[[ProcessingEvent], None]] = None,
    use_proxy: Optional[bool] = None,
    force_reprocess: bool = False,
    public_base_url: Optional[str] = None,
    storage: Optional[StorageBackend] = None,
    fetcher: Optional[AssetFetcher] = None,
    proxy_source: Optional[ProxyPoolSource] = None,
    cancel_event: Optional[asyncio.Event] = None,
    settings: Optional[Config] = None
) -> ProcessedScriptResult:
    """Run one mirroring pass with a fresh orchestrator"""
    orchestrator = MirrorOrchestrator(
        settings=settings, storage=storage, fetcher=fetcher, proxy_source=proxy_source
    )
    return await orchestrator.process(
        script_content,
        requested_name,
        on_event=on_event,
        use_proxy=use_proxy,
        force_reprocess=force_reprocess,
        public_base_url=public_base_url,
        cancel_event=cancel_event
    )
