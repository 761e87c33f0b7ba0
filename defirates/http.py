from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)

# Some protocol APIs sit behind WAFs that reject bare client user agents
DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
}


async def _log_request(request: httpx.Request) -> None:
    logger.debug(f"--> {request.method} {request.url}")


async def _log_response(response: httpx.Response) -> None:
    request = response.request
    logger.debug(f"<-- {request.method} {request.url} status={response.status_code}")


class HttpClient:
    def __init__(self, timeout: float = 30.0, debug: bool = False, transport: httpx.AsyncBaseTransport | None = None):
        event_hooks = {"request": [_log_request], "response": [_log_response]} if debug else None
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers=DEFAULT_HEADERS,
            event_hooks=event_hooks,
            transport=transport,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type((httpx.HTTPError, httpx.ConnectError, httpx.ReadTimeout)),
    )
    async def get(self, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        logger.debug(f"HTTP GET {url} params={params}")
        resp = await self._client.get(url, params=params, headers=headers)
        resp.raise_for_status()
        return resp

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Any:
        resp = await self.get(url, params=params, headers=headers)
        return resp.json()

    async def aclose(self) -> None:
        await self._client.aclose()
