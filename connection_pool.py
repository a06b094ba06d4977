import logging
from typing import Optional

import aiohttp
from aiohttp import ClientTimeout, TCPConnector

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class HTTPSessionManager:
    """Shared keep-alive session for JSON-RPC calls against one node"""

    def __init__(self, pool_size: int = 10, timeout: int = 10, dns_cache_ttl: int = 300):
        self.pool_size = pool_size
        self.timeout = timeout
        self.dns_cache_ttl = dns_cache_ttl
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def running(self) -> bool:
        return self._session is not None and not self._session.closed

    @property
    def session(self) -> aiohttp.ClientSession:
        if not self.running:
            raise RuntimeError("Session manager not started")
        return self._session

    async def start(self):
        if self.running:
            return
        connector = TCPConnector(
            limit=self.pool_size,
            ttl_dns_cache=self.dns_cache_ttl,
            enable_cleanup_closed=True
        )
        self._session = aiohttp.ClientSession(
            connector=connector,
            headers=JSON_HEADERS,
            timeout=ClientTimeout(total=self.timeout, sock_connect=min(self.timeout, 5))
        )
        logger.info(f"RPC connection pool ready ({self.pool_size} connections, {self.timeout}s timeout)")

    async def stop(self):
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()
            logger.info("RPC connection pool closed")
