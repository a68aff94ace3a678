"""
REST client for the Polymarket CLOB API.
Handles market listing, batched orderbook queries, order submission and
API credential derivation.
"""

import asyncio
import json
import time
from typing import Any, Optional, TYPE_CHECKING

import aiohttp
from py_clob_client.utilities import order_to_json

from ..orderbook import OrderBookSnapshot
from .auth import ApiCredentials, AuthManager

if TYPE_CHECKING:
    from ..monitor import Logger


BOOK_BATCH_SIZE = 50  # Max token IDs per /books request
END_CURSOR = "LTE="  # Terminal cursor of paged endpoints


class RateLimiter:
    """Sliding-window rate limiter."""

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: list[float] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request can be made."""
        async with self._lock:
            now = time.monotonic()
            self.requests = [t for t in self.requests if now - t < self.window_seconds]

            if len(self.requests) >= self.max_requests:
                # Wait until oldest request expires
                sleep_time = self.window_seconds - (now - self.requests[0])
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)
                self.requests = self.requests[1:]

            self.requests.append(time.monotonic())


class PolymarketRestClient:
    """REST client for the Polymarket CLOB API."""

    def __init__(
        self,
        auth_manager: AuthManager,
        base_url: str = "https://clob.polymarket.com",
        timeout_seconds: int = 10,
        max_retries: int = 3,
        retry_backoff_base: float = 1.5,
        logger: Optional["Logger"] = None,
    ):
        self.auth = auth_manager
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self.logger = logger
        self._session: Optional[aiohttp.ClientSession] = None

        # Rate limiters per endpoint category
        self._book_limiter = RateLimiter(50, 10)  # /books is 500 req / 10s
        self._order_limiter = RateLimiter(350, 10)  # 3500/10s burst
        self._general_limiter = RateLimiter(900, 10)  # 9000/10s

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        authenticated: bool = False,
        body: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
        limiter: Optional[RateLimiter] = None,
        retries: Optional[int] = None,
        error_body: bool = False,
    ) -> Any:
        """
        Make HTTP request with retry logic.

        With ``error_body`` a 4xx/5xx response is returned as
        ``{"success": False, "errorMsg": ...}`` instead of raising.
        """
        session = await self._get_session()
        limiter = limiter or self._general_limiter
        attempts = retries or self.max_retries
        url = f"{self.base_url}{path}"
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""

        for attempt in range(attempts):
            await limiter.acquire()

            request_headers = {"Content-Type": "application/json"}
            if headers:
                request_headers.update(headers)
            if authenticated:
                request_headers.update(self.auth.get_l2_headers(method, path.split("?")[0], body_str))

            try:
                async with session.request(
                    method,
                    url,
                    headers=request_headers,
                    data=body_str if body is not None else None,
                ) as response:
                    if response.status == 429 and attempt < attempts - 1:
                        await asyncio.sleep(self.retry_backoff_base ** attempt)
                        continue

                    if error_body and response.status >= 400:
                        try:
                            data = await response.json(content_type=None)
                        except (aiohttp.ContentTypeError, ValueError):
                            data = {}
                        message = data.get("error") if isinstance(data, dict) else None
                        return {
                            "success": False,
                            "errorMsg": message or f"HTTP {response.status} {response.reason}",
                        }

                    response.raise_for_status()
                    return await response.json(content_type=None)

            except aiohttp.ClientError:
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(self.retry_backoff_base ** attempt)

        raise RuntimeError(f"{method} {path} failed after {attempts} attempts")

    # === Market discovery ===

    async def get_markets_page(
        self,
        cursor: str = "",
    ) -> tuple[list[dict[str, Any]], Optional[str]]:
        """
        One page of the actively sampled market listing.

        Returns (markets, next_cursor); next_cursor is None on the last page.
        """
        path = "/sampling-markets"
        if cursor:
            path += f"?next_cursor={cursor}"
        data = await self._request("GET", path)

        markets = data.get("data") or []
        next_cursor = data.get("next_cursor")
        if not next_cursor or next_cursor == END_CURSOR:
            next_cursor = None
        return markets, next_cursor

    # === Order books ===

    async def _fetch_book_chunk(self, token_ids: list[str]) -> list[dict[str, Any]]:
        body = [{"token_id": token_id} for token_id in token_ids]
        data = await self._request("POST", "/books", body=body, limiter=self._book_limiter)
        return data if isinstance(data, list) else []

    async def get_order_books(self, token_ids: list[str]) -> list[OrderBookSnapshot]:
        """
        Fetch books for many tokens.

        Chunks are requested together and awaited together. A failed chunk
        or a malformed book is skipped; the caller sees fewer books.
        """
        if not token_ids:
            return []

        chunks = [
            token_ids[i:i + BOOK_BATCH_SIZE]
            for i in range(0, len(token_ids), BOOK_BATCH_SIZE)
        ]
        results = await asyncio.gather(
            *(self._fetch_book_chunk(chunk) for chunk in chunks),
            return_exceptions=True,
        )

        books = []
        for chunk, result in zip(chunks, results):
            if isinstance(result, Exception):
                if self.logger:
                    self.logger.warning(
                        "book_batch_failed",
                        tokens=len(chunk),
                        first_token=chunk[0],
                        error=str(result),
                    )
                continue
            for raw in result:
                try:
                    books.append(OrderBookSnapshot.from_api(raw))
                except ValueError as e:
                    if self.logger:
                        self.logger.debug("book_parse_failed", asset_id=raw.get("asset_id"), error=str(e))
        return books

    # === Orders ===

    async def post_order(self, signed_order: Any, order_type: str = "FOK") -> dict[str, Any]:
        """
        Submit a signed order.

        Never retried: a resend after a lost response could fill twice.
        Venue rejections come back as a dict with success False.
        """
        body = order_to_json(signed_order, self.auth.owner, order_type)
        data = await self._request(
            "POST",
            "/order",
            authenticated=True,
            body=body,
            limiter=self._order_limiter,
            retries=1,
            error_body=True,
        )
        return data if isinstance(data, dict) else {}

    # === Credentials ===

    async def create_or_derive_api_key(self, nonce: int = 0) -> ApiCredentials:
        """Derive existing L2 credentials, creating them on first use."""
        try:
            data = await self._request(
                "GET", "/auth/derive-api-key", headers=self.auth.get_l1_headers(nonce), retries=1
            )
        except aiohttp.ClientResponseError:
            data = await self._request(
                "POST", "/auth/api-key", headers=self.auth.get_l1_headers(nonce), retries=1
            )

        credentials = ApiCredentials(
            api_key=data["apiKey"],
            api_secret=data["secret"],
            api_passphrase=data["passphrase"],
        )
        self.auth.credentials = credentials
        return credentials
