"""
Async HTTP Client Base

Shared retry loop for the collaborator clients. Calls made during a click
or a completion are short: a single retry and tight timeouts, with callers
adding an outer asyncio.wait_for.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiClientError(Exception):
    """Error talking to an external API."""

    def __init__(self, message: str, status_code: int = None, response: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 1
    initial_delay: float = 0.2
    max_delay: float = 1.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


class AsyncApiClient:
    """httpx.AsyncClient wrapper with retry and lifecycle handling."""

    service_name = "api"
    error_class = ApiClientError

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._closed = False

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make request with retry logic."""
        if self._closed:
            raise self.error_class("Client has been closed")

        config = self.retry_config
        last_exception = None

        for attempt in range(config.max_retries + 1):
            try:
                response = await self._client.request(method, endpoint, params=params)

                if response.status_code >= 400:
                    error = self.error_class(
                        f"{self.service_name} error: {response.status_code}",
                        status_code=response.status_code,
                    )
                    if response.status_code not in config.retryable_status_codes:
                        raise error
                    last_exception = error
                else:
                    return response.json()

            except httpx.TimeoutException as e:
                last_exception = self.error_class(f"Request timed out: {e}")
            except httpx.RequestError as e:
                last_exception = self.error_class(f"Request failed: {e}")

            if attempt < config.max_retries:
                delay = min(
                    config.initial_delay * (config.exponential_base**attempt),
                    config.max_delay,
                )
                logger.warning(
                    f"{self.service_name} request failed, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{config.max_retries + 1})"
                )
                await asyncio.sleep(delay)

        raise last_exception

    async def close(self):
        """Close the HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
