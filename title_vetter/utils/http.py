from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from .rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; TitleCompanyVetter/1.0)"


class ResponseTooLarge(RuntimeError):
    pass


class HttpClient:
    def __init__(
        self,
        timeout_seconds: float = 10.0,
        retries: int = 1,
        rate_limiter: Optional[AsyncRateLimiter] = None,
        max_bytes_per_response: int = 2_000_000,
        user_agent: str = DEFAULT_USER_AGENT,
        follow_redirects: bool = True,
    ) -> None:
        self.timeout = httpx.Timeout(timeout_seconds)
        self.retries = retries
        self.rate_limiter = rate_limiter
        self.max_bytes_per_response = max_bytes_per_response
        self.follow_redirects = follow_redirects
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=self.follow_redirects,
            headers={"User-Agent": user_agent},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get(self, url: str, headers: Optional[dict] = None, timeout: Optional[float] = None) -> httpx.Response:
        return await self.request("GET", url, headers=headers, timeout=timeout)

    async def head(self, url: str, headers: Optional[dict] = None, timeout: Optional[float] = None) -> httpx.Response:
        return await self.request("HEAD", url, headers=headers, timeout=timeout)

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        method = method.upper()
        request_timeout = httpx.Timeout(timeout) if timeout is not None else self.timeout

        last_exc: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            if self.rate_limiter:
                await self.rate_limiter.wait()
            try:
                async with self._client.stream(method, url, headers=headers, timeout=request_timeout) as resp:
                    content = bytearray()
                    async for chunk in resp.aiter_bytes():
                        content.extend(chunk)
                        if len(content) > self.max_bytes_per_response:
                            raise ResponseTooLarge(f"response from {url} exceeded {self.max_bytes_per_response} bytes")
                    # aiter_bytes already decoded the body
                    response_headers = [
                        (k, v) for k, v in resp.headers.multi_items() if k.lower() not in ("content-encoding", "content-length")
                    ]
                    return httpx.Response(
                        status_code=resp.status_code,
                        headers=response_headers,
                        content=bytes(content),
                        request=resp.request,
                    )
            except ResponseTooLarge:
                raise
            except httpx.HTTPError as exc:
                last_exc = exc
                logger.debug("http error", extra={"url": url, "error": str(exc), "attempt": attempt})
                if attempt < self.retries:
                    await asyncio.sleep(0.2 * (attempt + 1))
        if last_exc:
            raise last_exc
        raise RuntimeError("http request failed")
