import asyncio
import logging
import time

import httpx

logger = logging.getLogger(__name__)

MAX_COOLDOWN_SECONDS = 60.0


class RateLimitedClient:
    """Async HTTP client with interval-based rate limiting.

    A 429 response pauses every caller sharing the client for the upstream's
    Retry-After (capped). The response itself is returned unchanged so callers
    can map it to their own error.
    """

    def __init__(
        self,
        rate_per_second: float = 5.0,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._min_interval = 1.0 / rate_per_second
        self._next_slot = 0.0
        self._lock = asyncio.Lock()
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    async def _wait_for_slot(self) -> None:
        async with self._lock:
            delay = self._next_slot - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)
            self._next_slot = time.monotonic() + self._min_interval

    def _note_throttle(self, resp: httpx.Response) -> None:
        if resp.status_code != 429:
            return
        cooldown = min(_retry_after_seconds(resp, default=self._min_interval * 10), MAX_COOLDOWN_SECONDS)
        logger.warning("Throttled by %s, pausing requests for %.1fs", resp.request.url.host, cooldown)
        self._next_slot = max(self._next_slot, time.monotonic() + cooldown)

    async def get(self, url: str, params: dict | None = None) -> httpx.Response:
        await self._wait_for_slot()
        resp = await self._client.get(url, params=params)
        self._note_throttle(resp)
        return resp

    async def post(self, url: str, json: dict | list | None = None) -> httpx.Response:
        await self._wait_for_slot()
        resp = await self._client.post(url, json=json)
        self._note_throttle(resp)
        return resp

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RateLimitedClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


def _retry_after_seconds(resp: httpx.Response, default: float) -> float:
    value = resp.headers.get("Retry-After", "")
    try:
        return max(float(value), 0.0)
    except ValueError:
        return default


def bearer_headers(api_key: str) -> dict[str, str] | None:
    if not api_key:
        return None
    return {"Authorization": f"Bearer {api_key}"}
