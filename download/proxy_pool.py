"""
Proxy Pool Source
Fetches candidate forward proxies from a public JSON list
"""
import asyncio
import json
from typing import Any, List, Optional

import aiohttp

from core.config import config
from utils.logger import logger


def is_http_proxy_entry(entry: Any) -> bool:
    """Plain-HTTP endpoints only, CONNECT tunnelling through socks or https proxies is unsupported"""
    return isinstance(entry, dict) and isinstance(entry.get('proxy'), str) and entry['proxy'].startswith('http://')


class ProxyPoolSource:
    """
    Remote proxy list reader

    Never raises: any network, status or parse failure is logged and yields
    an empty list, which callers treat as "degrade to direct".
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: Optional[float] = None):
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout or config.proxy_list_timeout)
        self.logger = logger

    async def list(self, source_url: Optional[str] = None) -> List[str]:
        """
        Fetch the proxy endpoints

        Args:
            source_url: List location (default from configuration)

        Returns:
            Endpoint URL strings such as "http://1.2.3.4:8080"
        """
        target_url = source_url or config.proxy_list_url
        headers = {
            'User-Agent': config.user_agent,
            'Accept': 'application/json',
            'Cache-Control': 'no-store',
        }

        own_session = self.session is None
        session = self.session or aiohttp.ClientSession(timeout=self.timeout)
        try:
            async with session.get(target_url, headers=headers, timeout=self.timeout) as response:
                if response.status < 200 or response.status >= 300:
                    self.logger.warning(f"Failed to fetch proxy list from {target_url} (status {response.status}).")
                    return []
                body = await response.text()

            data = json.loads(body)
            if not isinstance(data, list):
                self.logger.warning(f"Unexpected proxy list format from {target_url}.")
                return []

            proxies = [entry['proxy'] for entry in data if is_http_proxy_entry(entry)]
            self.logger.info(f"Fetched {len(proxies)} HTTP proxies from {target_url}")
            return proxies

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.warning(f"Failed to retrieve proxy list from {target_url}: {e}")
            return []
        finally:
            if own_session:
                await session.close()


async def fetch_proxy_list(source_url: Optional[str] = None) -> List[str]:
    """One-shot helper with a throwaway session"""
    return await ProxyPoolSource().list(source_url)
