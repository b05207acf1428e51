"""
Asset Fetcher
Single timed GET, optionally routed through a forward proxy
"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import aiohttp

from core.config import config
from core.exceptions import RunCancelled
from utils.logger import logger


@dataclass
class FetchResponse:
    """Fully buffered response of one fetch attempt"""
    url: str
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    proxy: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> Optional[str]:
        for name, value in self.headers.items():
            if name.lower() == 'content-type':
                return value
        return None


class AssetFetcher:
    """
    HTTP fetcher owning one client session per route

    Sessions are keyed by proxy endpoint (None for direct) and created on
    first use, so every worker that hits the same proxy reuses its pooled
    connections. All sessions belong to this fetcher and close with it;
    create one fetcher per run.
    """

    def __init__(self, timeout: Optional[float] = None, user_agent: Optional[str] = None, verify_ssl: bool = True):
        self.timeout = timeout or config.request_timeout
        self.user_agent = user_agent or config.user_agent
        self.verify_ssl = verify_ssl
        self._sessions: Dict[Optional[str], aiohttp.ClientSession] = {}
        self.logger = logger

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _session_for(self, proxy: Optional[str]) -> aiohttp.ClientSession:
        session = self._sessions.get(proxy)
        if session is None or session.closed:
            connector = aiohttp.TCPConnector(
                limit=config.get('download.connections_per_route', 10),
                ssl=self.verify_ssl
            )
            session = aiohttp.ClientSession(
                connector=connector,
                headers={'User-Agent': self.user_agent, 'Accept': 'image/*,*/*;q=0.8'}
            )
            self._sessions[proxy] = session
            self.logger.debug(f"Opened client session for route {proxy or 'direct'}")
        return session

    async def _get(self, url: str, proxy: Optional[str], timeout: float) -> FetchResponse:
        session = self._session_for(proxy)
        async with session.get(
            url,
            proxy=proxy,
            timeout=aiohttp.ClientTimeout(total=timeout),
            allow_redirects=True
        ) as response:
            headers = {name: value for name, value in response.headers.items()}
            if 200 <= response.status < 300:
                body = await response.read()
            else:
                body = b""
            return FetchResponse(url=url, status=response.status, headers=headers, body=body, proxy=proxy)

    async def get(
        self,
        url: str,
        proxy: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> FetchResponse:
        """
        Fetch a URL and buffer the whole body

        Args:
            url: Absolute http(s) URL
            proxy: Forward proxy endpoint, None for a direct request
            timeout: Whole-request timeout in seconds
            cancel_event: Abort signal; setting it cancels the request

        Returns:
            FetchResponse (non-2xx statuses are returned, not raised)

        Raises:
            aiohttp.ClientError: connection level failures
            asyncio.TimeoutError: the attempt exceeded its timeout
            RunCancelled: cancel_event fired first
        """
        timeout = timeout or self.timeout
        if cancel_event is None:
            return await self._get(url, proxy, timeout)

        if cancel_event.is_set():
            raise RunCancelled(f"Fetch of {url} aborted", component='fetcher')

        fetch = asyncio.ensure_future(self._get(url, proxy, timeout))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({fetch, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            fetch.cancel()
            waiter.cancel()
            raise

        if fetch in done:
            waiter.cancel()
            return fetch.result()

        fetch.cancel()
        await asyncio.gather(fetch, return_exceptions=True)
        raise RunCancelled(f"Fetch of {url} aborted", component='fetcher')

    async def close(self):
        """Close every route session"""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            if not session.closed:
                await session.close()
        if sessions:
            self.logger.debug(f"Closed {len(sessions)} client session(s)")
