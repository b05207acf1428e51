"""
Download Coordinator
Bounded worker pool that fetches, deduplicates and stores every planned asset
"""
import asyncio
import itertools
import random
from typing import Awaitable, Callable, List, Optional, Sequence, Set

import aiohttp

from core.config import config
from core.exceptions import AssetDownloadFailed, MirrorError, RunCancelled, VariantError
from data.models import (
    AssetPlan, AssetUploadResult, AssetStartEvent, AssetStoredEvent,
    ProcessingEvent, StoredObject, THUMBNAIL_MARKER
)
from storage.base import StorageBackend
from utils.logger import logger
from utils.helpers import hash_content, resolve_extension, sanitize_key_segment, shuffled, format_bytes

from .fetcher import AssetFetcher, FetchResponse
from .variants import ThumbnailGenerator, THUMBNAIL_SIZE

DEFAULT_CONTENT_TYPE = "application/octet-stream"

EventCallback = Callable[[ProcessingEvent], None]
ExistsCheck = Callable[[str], Awaitable[bool]]


def build_proxy_attempts(
    preferred: Optional[str],
    pool: Sequence[str],
    max_extra: int,
    rng: Optional[random.Random] = None
) -> List[str]:
    """
    Ordered, distinct proxy routes for one plan

    The worker's preferred proxy goes first, followed by up to max_extra
    randomly sampled others. Without a preferred proxy, max_extra is the cap.
    """
    if max_extra <= 0:
        return [preferred] if preferred else []

    limit = 1 + max_extra if preferred else max_extra
    attempts: List[str] = []
    seen: Set[str] = set()

    if preferred:
        attempts.append(preferred)
        seen.add(preferred)

    for proxy in shuffled(pool, rng):
        if len(attempts) >= limit:
            break
        if proxy in seen:
            continue
        attempts.append(proxy)
        seen.add(proxy)

    return attempts


def build_routes(
    proxy_requested: bool,
    pool: Sequence[str],
    preferred: Optional[str],
    max_attempts: int,
    rng: Optional[random.Random] = None
) -> List[Optional[str]]:
    """
    Every route one plan may try, None meaning direct

    With proxy mode requested and a non-empty pool there is no direct
    fallback: the caller asked for geo-bypass. Otherwise exactly one direct
    attempt.
    """
    routes: List[Optional[str]] = []
    if proxy_requested and pool:
        routes.extend(build_proxy_attempts(preferred, pool, max_attempts - 1, rng))

    allow_direct = not proxy_requested or not pool
    if allow_direct or not routes:
        routes.append(None)

    return routes


class DownloadCoordinator:
    """
    Scheduler for one run's asset downloads

    Features:
    - Fixed-size worker pool pulling plan indices from a shared counter
    - Per-worker preferred proxy, sampled without replacement from the pool
    - Proxy rotation with bounded attempts and optional direct fallback
    - Content-addressed keys; existing keys are reused, not re-uploaded
    - 256px companion thumbnails for character images
    - Results land in plan order regardless of completion order
    """

    def __init__(
        self,
        storage: StorageBackend,
        fetcher: AssetFetcher,
        prefix: str,
        proxy_requested: bool = False,
        proxy_pool: Optional[Sequence[str]] = None,
        force_reprocess: bool = False,
        check_exists: Optional[ExistsCheck] = None,
        on_event: Optional[EventCallback] = None,
        thumbnails: Optional[ThumbnailGenerator] = None,
        cancel_event: Optional[asyncio.Event] = None,
        rng: Optional[random.Random] = None,
        timeout: Optional[float] = None,
        max_proxy_attempts: Optional[int] = None,
        direct_concurrency: Optional[int] = None,
        proxy_concurrency: Optional[int] = None,
        cache_control: Optional[str] = None
    ):
        self.storage = storage
        self.fetcher = fetcher
        self.prefix = prefix
        self.proxy_requested = proxy_requested
        self.proxy_pool = list(proxy_pool or [])
        self.force_reprocess = force_reprocess
        self.check_exists = check_exists or storage.exists
        self.on_event = on_event
        self.thumbnails = thumbnails or ThumbnailGenerator()
        self.cancel_event = cancel_event
        self.rng = rng or random.Random()
        self.logger = logger

        self.timeout = timeout or config.request_timeout
        self.max_proxy_attempts = max_proxy_attempts or config.max_proxy_attempts
        self.direct_concurrency = direct_concurrency or config.direct_concurrency
        self.proxy_concurrency = proxy_concurrency or config.proxy_concurrency
        self.cache_control = cache_control or config.asset_cache_control

        # Run-scoped state; single event loop, so plain set/counter are race free
        self.proxies_used: Set[str] = set()
        self._next_index = itertools.count()

    @property
    def proxy_active(self) -> bool:
        return self.proxy_requested and len(self.proxy_pool) > 0

    def worker_count(self, plan_count: int) -> int:
        base = self.proxy_concurrency if self.proxy_requested else self.direct_concurrency
        return max(1, min(plan_count, base))

    async def run(self, plans: Sequence[AssetPlan]) -> List[AssetUploadResult]:
        """
        Download and store every plan

        Args:
            plans: Planner output, in document order

        Returns:
            Flat result list: per plan, the original then its thumbnail (if any)

        Raises:
            AssetDownloadFailed: a plan exhausted its routes; sibling workers are cancelled
            RunCancelled: the abort signal fired
        """
        if not plans:
            return []

        worker_count = self.worker_count(len(plans))
        assignments = shuffled(self.proxy_pool, self.rng)[:worker_count] if self.proxy_active else []
        slots: List[Optional[List[AssetUploadResult]]] = [None] * len(plans)
        self._next_index = itertools.count()

        self.logger.info(
            f"[DOWNLOAD] {len(plans)} asset(s), {worker_count} worker(s), "
            f"proxy {'on' if self.proxy_active else 'off'} ({len(self.proxy_pool)} in pool)"
        )

        tasks = [
            asyncio.ensure_future(self._worker(
                worker_index,
                assignments[worker_index] if worker_index < len(assignments) else None,
                plans,
                slots
            ))
            for worker_index in range(worker_count)
        ]

        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        results: List[AssetUploadResult] = []
        for index, assets in enumerate(slots):
            if assets is None:
                raise MirrorError(f"Asset plan at index {index} did not complete processing.", component='coordinator')
            results.extend(assets)

        uploaded = sum(asset.size for asset in results)
        reused = sum(1 for asset in results if asset.deduplicated)
        self.logger.info(f"[DOWNLOAD] Stored {len(results)} object(s), {reused} reused, {format_bytes(uploaded)} uploaded")
        return results

    async def _worker(
        self,
        worker_index: int,
        preferred_proxy: Optional[str],
        plans: Sequence[AssetPlan],
        slots: List[Optional[List[AssetUploadResult]]]
    ):
        while True:
            index = next(self._next_index)
            if index >= len(plans):
                return
            self._raise_if_cancelled()

            plan = plans[index]
            self.logger.debug(f"Worker {worker_index} took plan {index} ({plan.originalUrl})")
            self._emit(AssetStartEvent(plan=plan))
            slots[index] = await self.process_plan(plan, preferred_proxy)

    async def process_plan(self, plan: AssetPlan, preferred_proxy: Optional[str] = None) -> List[AssetUploadResult]:
        """Try each allowed route until one returns 2xx, then store the bytes"""
        routes = build_routes(
            self.proxy_requested, self.proxy_pool, preferred_proxy, self.max_proxy_attempts, self.rng
        )
        last_error: Optional[str] = None

        for attempt, route in enumerate(routes, start=1):
            self._raise_if_cancelled()
            try:
                response = await self.fetcher.get(
                    plan.originalUrl, proxy=route, timeout=self.timeout, cancel_event=self.cancel_event
                )
            except asyncio.TimeoutError:
                detail = f"timed out after {int(self.timeout * 1000)}ms"
                last_error = f"{route} -> {detail}" if route else detail
                self.logger.warning(f"Attempt {attempt}/{len(routes)} for {plan.originalUrl}: {last_error}")
                continue
            except (aiohttp.ClientError, OSError) as e:
                detail = str(e) or e.__class__.__name__
                last_error = f"{route} -> {detail}" if route else detail
                self.logger.warning(f"Attempt {attempt}/{len(routes)} for {plan.originalUrl}: {last_error}")
                continue

            if not response.ok:
                last_error = f"status {response.status}"
                self.logger.warning(f"Attempt {attempt}/{len(routes)} for {plan.originalUrl}: {last_error}")
                continue

            # put_bytes treats an empty payload as resolve-only
            if not response.body:
                last_error = f"{route} -> empty body" if route else "empty body"
                self.logger.warning(f"Attempt {attempt}/{len(routes)} for {plan.originalUrl}: {last_error}")
                continue

            if route is not None:
                self.proxies_used.add(route)
            return await self._store(plan, response)

        raise AssetDownloadFailed(plan.originalUrl, last_error)

    async def _store(self, plan: AssetPlan, response: FetchResponse) -> List[AssetUploadResult]:
        content = response.body
        content_type = response.content_type or DEFAULT_CONTENT_TYPE
        extension = resolve_extension(plan.originalUrl, content_type)
        stem = f"{self.prefix}/{sanitize_key_segment(plan.fileBaseName)}_{hash_content(content)}"

        original = await self._store_original(plan, f"{stem}.{extension}", content, content_type)
        self._emit(AssetStoredEvent(plan=plan, asset=original))
        results = [original]

        if plan.is_character_image:
            thumbnail = await self._store_thumbnail(plan, f"{stem}_{THUMBNAIL_SIZE}.{extension}", content, content_type)
            if thumbnail is not None:
                results.append(thumbnail)

        return results

    async def _store_original(self, plan: AssetPlan, key: str, content: bytes, content_type: str) -> AssetUploadResult:
        existing = await self._resolve_existing(key, content_type)
        if existing is not None:
            self.logger.debug(f"Dedup hit for {plan.originalUrl} at {key}")
            return self._result(plan, existing, content_type, size=0, deduplicated=True)

        stored = await self.storage.put_bytes(key, content, content_type, self.cache_control)
        return self._result(plan, stored, content_type, size=len(content), deduplicated=False)

    async def _store_thumbnail(
        self, plan: AssetPlan, key: str, content: bytes, content_type: str
    ) -> Optional[AssetUploadResult]:
        existing = await self._resolve_existing(key, content_type)
        if existing is not None:
            self.logger.debug(f"Dedup hit for thumbnail at {key}")
            return self._result(plan, existing, content_type, size=0, deduplicated=True, thumbnail=True)

        try:
            resized = await self.thumbnails.generate(content)
        except VariantError as e:
            self.logger.warning(f"Failed to resize character image {plan.originalUrl}: {e}")
            return None

        stored = await self.storage.put_bytes(key, resized, content_type, self.cache_control)
        return self._result(plan, stored, content_type, size=len(resized), deduplicated=False, thumbnail=True)

    async def _resolve_existing(self, key: str, content_type: str) -> Optional[StoredObject]:
        if self.force_reprocess:
            return None
        if not await self.check_exists(key):
            return None
        # Empty payload: resolve the URL without uploading
        return await self.storage.put_bytes(key, b"", content_type, self.cache_control)

    def _result(
        self,
        plan: AssetPlan,
        stored: StoredObject,
        content_type: str,
        size: int,
        deduplicated: bool,
        thumbnail: bool = False
    ) -> AssetUploadResult:
        data = plan.model_dump()
        if thumbnail:
            data['fileBaseName'] = f"{plan.fileBaseName}_{THUMBNAIL_SIZE}"
            data['variantLabel'] = f"{plan.variantLabel} {THUMBNAIL_MARKER}" if plan.variantLabel else THUMBNAIL_MARKER
        return AssetUploadResult(
            **data,
            storageKey=stored.storageKey,
            publicUrl=stored.publicUrl,
            contentType=content_type,
            size=size,
            deduplicated=deduplicated
        )

    def _emit(self, event: ProcessingEvent):
        if self.on_event is not None:
            self.on_event(event)

    def _raise_if_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RunCancelled("Run cancelled by caller", component='coordinator')
