"""
HTTP client for TikTok Live Recorder.
Thin aiohttp wrapper with browser headers, session cookies, proxy support
and transparent anti-bot challenge solving.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

import aiohttp

from .challenge import has_challenge, solve_challenge_async
from .errors import ChallengeUnsolvable, TransportError
from .logger import get_logger


DEFAULT_HEADERS = {
    'Sec-Ch-Ua': '"Not/A)Brand";v="8", "Chromium";v="126"',
    'Sec-Ch-Ua-Mobile': '?0',
    'Sec-Ch-Ua-Platform': '"Windows"',
    'Accept-Language': 'en-US',
    'Upgrade-Insecure-Requests': '1',
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/126.0.6478.127 Safari/537.36'
    ),
    'Accept': (
        'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,'
        'image/apng,application/json,text/plain,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7'
    ),
    'Sec-Fetch-Site': 'none',
    'Sec-Fetch-Mode': 'navigate',
    'Sec-Fetch-User': '?1',
    'Sec-Fetch-Dest': 'document',
    'Priority': 'u=0, i',
    'Referer': 'https://www.tiktok.com/',
    'Origin': 'https://www.tiktok.com',
}

PROXY_CHECK_URL = "https://ifconfig.me/ip"


@dataclass
class HttpResponse:
    """Buffered HTTP response."""
    status: int
    text: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    def json(self) -> dict:
        try:
            return json.loads(self.text)
        except ValueError as e:
            raise TransportError(f"Invalid JSON response from {self.url}: {e}") from e


class HttpClient:
    """
    aiohttp session wrapper.

    Features:
    - Browser-like headers and session cookies
    - Optional proxy, verified once on connect
    - Anti-bot challenge solved off the event loop, then the request is retried
    - aiohttp/timeout errors and 5xx answers surface as TransportError
    """

    def __init__(
        self,
        proxy: Optional[str] = None,
        cookies: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        stream_read_timeout: float = 30.0
    ):
        """
        Initialize HTTP client.

        Args:
            proxy: HTTP proxy URL.
            cookies: Session cookies (empty values are skipped).
            timeout: Total timeout for regular requests in seconds.
            stream_read_timeout: Per-read timeout for streaming requests.
        """
        self.proxy = proxy
        self.cookies = {k: v for k, v in (cookies or {}).items() if v}
        self.timeout = timeout
        self.stream_read_timeout = stream_read_timeout

        self._session: Optional[aiohttp.ClientSession] = None
        self._logger = get_logger('http')

    async def connect(self) -> None:
        """Open the session (and test the proxy if one is set)."""
        if self._session and not self._session.closed:
            return

        self._session = aiohttp.ClientSession(
            headers=DEFAULT_HEADERS,
            cookies=self.cookies,
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )

        if self.proxy:
            await self.check_proxy()

    async def close(self) -> None:
        """Close session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> 'HttpClient':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if not self._session or self._session.closed:
            await self.connect()
        return self._session

    def update_cookies(self, cookies: Dict[str, str]) -> None:
        """Add cookies to the running session."""
        self.cookies.update(cookies)
        if self._session:
            self._session.cookie_jar.update_cookies(cookies)

    async def check_proxy(self) -> bool:
        """
        Verify the proxy with a simple request.

        Returns:
            True if the proxy works. A failing proxy is dropped.
        """
        self._logger.info(f"Testing {self.proxy}...")
        try:
            async with self._session.get(
                PROXY_CHECK_URL,
                proxy=self.proxy,
                timeout=aiohttp.ClientTimeout(total=10)
            ) as resp:
                if resp.status == 200:
                    self._logger.info("Proxy set up successfully")
                    return True
                self._logger.error(f"Proxy test failed: HTTP {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.error(f"Proxy test failed: {e}")

        self._logger.warning("Continuing without proxy...")
        self.proxy = None
        return False

    async def get(
        self,
        url: str,
        params: Optional[dict] = None,
        allow_redirects: bool = True,
        solve_challenge: bool = True
    ) -> HttpResponse:
        """
        Perform a GET request and buffer the body.

        Args:
            url: Request URL.
            params: Query parameters.
            allow_redirects: Follow redirects.
            solve_challenge: Solve an anti-bot page and retry once.

        Returns:
            HttpResponse with status and text.

        Raises:
            TransportError: On network failure or a 5xx status.
            ChallengeUnsolvable: If the anti-bot check cannot be passed.
        """
        session = await self._ensure_session()

        try:
            async with session.get(
                url,
                params=params,
                allow_redirects=allow_redirects,
                proxy=self.proxy
            ) as resp:
                text = await resp.text(errors='replace')
                response = HttpResponse(
                    status=resp.status,
                    text=text,
                    url=str(resp.url),
                    headers=dict(resp.headers)
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"GET {url} failed: {e or type(e).__name__}") from e

        if response.status >= 500:
            raise TransportError(f"GET {url} failed: HTTP {response.status}")

        if has_challenge(response.text):
            if not solve_challenge:
                raise ChallengeUnsolvable("Anti-bot challenge persisted after solving")
            self._logger.info("Anti-bot challenge detected, solving...")
            self.update_cookies(await solve_challenge_async(response.text))
            return await self.get(url, params, allow_redirects, solve_challenge=False)

        return response

    async def get_json(self, url: str, params: Optional[dict] = None) -> dict:
        """GET a JSON document."""
        response = await self.get(url, params=params)
        return response.json()

    async def iter_chunks(self, url: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """
        Stream a response body chunk by chunk.

        Args:
            url: Stream URL.
            chunk_size: Maximum chunk size in bytes.

        Yields:
            Non-empty byte chunks.

        Raises:
            TransportError: On connection loss, read timeout or non-200 status.
        """
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=None, sock_read=self.stream_read_timeout)

        try:
            async with session.get(url, proxy=self.proxy, timeout=timeout) as resp:
                if resp.status != 200:
                    raise TransportError(f"Stream request failed: HTTP {resp.status}")
                async for chunk in resp.content.iter_chunked(chunk_size):
                    if chunk:
                        yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Stream interrupted: {e or type(e).__name__}") from e
