"""
Async HTTP client wrapper for provider requests.
Handles timeout management, failure classification and metrics collection.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.utils.errors import ProviderUnauthorized, TransientProviderError
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS

logger = get_logger(__name__)

UNAUTHORIZED_STATUSES = (401, 403)


class ProviderHTTPClient:
    """
    Async HTTP client for the upstream provider.

    One attempt per call: the resilience controller owns backoff, so a failed
    request surfaces immediately instead of being retried inside a tick.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()

    async def get_text(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        endpoint: str = "unknown",
    ) -> str:
        """
        Perform a GET request and return the raw body.

        Args:
            path: API path relative to base_url.
            params: Query parameters.
            endpoint: Short endpoint label for metrics.

        Raises:
            ProviderUnauthorized: On 401/403.
            TransientProviderError: On any other non-2xx response, network
                failure or timeout.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        start_time = time.perf_counter()
        status = "error"
        try:
            resp = await self._client.get(path, params=params)
            status = str(resp.status_code)
            if resp.status_code in UNAUTHORIZED_STATUSES:
                logger.error(
                    "provider_unauthorized",
                    provider=self._provider,
                    endpoint=endpoint,
                    status=resp.status_code,
                )
                raise ProviderUnauthorized(self._provider, resp.status_code)
            resp.raise_for_status()
            logger.debug(
                "provider_request_success",
                provider=self._provider,
                endpoint=endpoint,
                status=resp.status_code,
                latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return resp.text
        except httpx.TimeoutException as exc:
            status = "timeout"
            logger.warning("provider_timeout", provider=self._provider, endpoint=endpoint)
            raise TransientProviderError(f"{self._provider} {endpoint}: timeout") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "provider_http_error",
                provider=self._provider,
                endpoint=endpoint,
                status=exc.response.status_code,
            )
            raise TransientProviderError(
                f"{self._provider} {endpoint}: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "provider_transport_error", provider=self._provider, endpoint=endpoint, error=str(exc)
            )
            raise TransientProviderError(f"{self._provider} {endpoint}: {exc}") from exc
        finally:
            PROVIDER_REQUESTS.labels(
                provider=self._provider, endpoint=endpoint, status=status
            ).inc()
            PROVIDER_LATENCY.labels(provider=self._provider).observe(
                time.perf_counter() - start_time
            )
