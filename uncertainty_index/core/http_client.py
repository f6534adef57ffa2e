"""
Base HTTP client shared by the survey adapters.

Provides bounded concurrency, exponential backoff with jitter and the
error classification from api_errors. Responses can be consumed as JSON
(REST APIs), text (scraped pages) or bytes (workbook downloads).
"""
import asyncio
import logging
import random
from typing import Dict, Optional, Any

import httpx

from uncertainty_index.core.api_errors import (
    APIError,
    RetryableError,
    RateLimitError,
    FatalError,
    classify_http_error,
)

logger = logging.getLogger(__name__)


class BaseAPIClient:
    """
    Base class for every outbound HTTP client.

    Subclasses set SOURCE_NAME (and BASE_URL when requests use relative
    paths) and may override _check_api_error, _build_headers and
    _add_auth_to_params for origin-specific behaviour.
    """

    SOURCE_NAME: str = "http"
    BASE_URL: str = ""

    DEFAULT_MAX_CONCURRENCY: int = 4
    DEFAULT_TIMEOUT: float = 30.0
    DEFAULT_CONNECT_TIMEOUT: float = 10.0
    DEFAULT_MAX_RETRIES: int = 3
    DEFAULT_BACKOFF_FACTOR: float = 2.0
    DEFAULT_MAX_BACKOFF: float = 60.0
    DEFAULT_JITTER_FACTOR: float = 0.25

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_key: Optional API key for authentication
            max_concurrency: Maximum in-flight requests (semaphore size)
            max_retries: Attempts per request, including the first
            backoff_factor: Exponential backoff multiplier
            timeout: Request timeout in seconds
            connect_timeout: Connection timeout in seconds
            http_client: Pre-built client (tests pass one with a MockTransport)
        """
        self.api_key = api_key
        self.max_concurrency = max_concurrency
        self.max_retries = max(1, max_retries)
        self.backoff_factor = backoff_factor
        self.timeout = timeout
        self.connect_timeout = connect_timeout

        self.semaphore = asyncio.Semaphore(max_concurrency)
        self._client: Optional[httpx.AsyncClient] = http_client

        logger.debug(
            f"Initialized {self.SOURCE_NAME} client: "
            f"api_key_present={api_key is not None}, "
            f"max_concurrency={max_concurrency}, "
            f"max_retries={self.max_retries}"
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the pooled HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
                follow_redirects=True,
                limits=httpx.Limits(
                    max_connections=self.max_concurrency * 2,
                    max_keepalive_connections=self.max_concurrency,
                ),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release its connections."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug(f"{self.SOURCE_NAME} client closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _backoff(self, attempt: int, base_delay: float = 1.0) -> None:
        """Sleep for an exponentially growing, jittered delay."""
        delay = min(base_delay * (self.backoff_factor ** attempt), self.DEFAULT_MAX_BACKOFF)
        jitter = delay * self.DEFAULT_JITTER_FACTOR * (2 * random.random() - 1)
        delay_with_jitter = max(0.1, delay + jitter)

        logger.debug(f"Backing off for {delay_with_jitter:.2f}s (attempt {attempt + 1})")
        await asyncio.sleep(delay_with_jitter)

    def _check_api_error(self, data: Dict[str, Any], resource_id: str) -> Optional[APIError]:
        """
        Detect errors reported inside a 200 JSON body.

        Returns:
            APIError if the payload describes an error, None otherwise
        """
        if isinstance(data, dict) and "error" in data:
            error_msg = data.get("error")
            if isinstance(error_msg, dict):
                error_msg = error_msg.get("message", str(error_msg))
            return FatalError(str(error_msg), source=self.SOURCE_NAME, response_data=data)
        return None

    def _build_headers(self) -> Dict[str, str]:
        return {"User-Agent": f"uncertainty-index/{self.SOURCE_NAME}-client"}

    def _add_auth_to_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return params

    def _resolve_url(self, url: str) -> str:
        if url.startswith("http"):
            return url
        return f"{self.BASE_URL.rstrip('/')}/{url.lstrip('/')}"

    async def _send(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        resource_id: str = "unknown",
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Issue a GET with retries and return the successful response.

        Raises:
            APIError: When the request fails permanently or retries run out
        """
        url = self._resolve_url(url)
        params = self._add_auth_to_params(dict(params or {}))
        headers = self._build_headers()
        if extra_headers:
            headers.update(extra_headers)

        async with self.semaphore:
            client = await self._get_client()
            last_error: Optional[APIError] = None

            for attempt in range(self.max_retries):
                try:
                    logger.debug(
                        f"[{self.SOURCE_NAME}] GET {resource_id} "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    response = await client.get(url, params=params, headers=headers)
                    response.raise_for_status()
                    return response

                except httpx.HTTPStatusError as e:
                    error = classify_http_error(
                        e.response.status_code, e.response.text[:500], self.SOURCE_NAME
                    )
                    if isinstance(error, RateLimitError) and attempt < self.max_retries - 1:
                        retry_after = e.response.headers.get("Retry-After")
                        wait_time = int(retry_after) if retry_after and retry_after.isdigit() else error.retry_after
                        logger.warning(f"[{self.SOURCE_NAME}] Rate limited. Waiting {wait_time}s")
                        await asyncio.sleep(wait_time)
                        last_error = error
                        continue
                    if error.retryable and attempt < self.max_retries - 1:
                        logger.warning(f"[{self.SOURCE_NAME}] Retryable HTTP error: {error}")
                        await self._backoff(attempt)
                        last_error = error
                        continue
                    raise error

                except httpx.RequestError as e:
                    last_error = RetryableError(
                        f"Request failed: {e}", source=self.SOURCE_NAME
                    )
                    if attempt < self.max_retries - 1:
                        logger.warning(
                            f"[{self.SOURCE_NAME}] Request error (attempt {attempt + 1}): {e}"
                        )
                        await self._backoff(attempt)
                        continue
                    raise last_error

            if last_error:
                raise last_error
            raise APIError(
                f"Failed to fetch {resource_id} after {self.max_retries} attempts",
                source=self.SOURCE_NAME,
            )

    async def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        resource_id: str = "unknown",
    ) -> Dict[str, Any]:
        """GET a JSON document, checking the body for embedded errors."""
        response = await self._send(url, params=params, resource_id=resource_id)
        try:
            data = response.json()
        except ValueError as e:
            raise FatalError(
                f"Invalid JSON from {resource_id}: {e}", source=self.SOURCE_NAME
            ) from e
        api_error = self._check_api_error(data, resource_id)
        if api_error:
            raise api_error
        return data

    async def get_text(self, url: str, resource_id: str = "unknown") -> str:
        """GET a page and return its decoded body."""
        response = await self._send(url, resource_id=resource_id)
        return response.text

    async def get_bytes(self, url: str, resource_id: str = "unknown") -> bytes:
        """GET a binary download (e.g. an .xlsx workbook)."""
        response = await self._send(url, resource_id=resource_id)
        return response.content
