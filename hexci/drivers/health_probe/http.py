"""HTTP health probe driver using httpx.AsyncClient."""

from __future__ import annotations

from typing import Any

import httpx

from hexci.kernel.logging import get_logger
from hexci.kernel.ports.health_probe import ProbeResult

logger = get_logger(__name__)


class HttpHealthProbe:
    """HealthProbe driver: a probe is healthy when the URL answers ``expected_status``.

    Connection errors and timeouts are reported as unhealthy, never raised.

    Parameters
    ----------
    headers : dict[str, str] | None
        Headers sent with every probe.
    follow_redirects : bool
        Whether to follow HTTP redirects (default: True).

    Examples
    --------
    Example usage::

        probe = HttpHealthProbe()
        result = await probe.aprobe("https://staging.example.com/health",
                                    timeout=5.0, expected_status=200)
        await probe.aclose()
    """

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        follow_redirects: bool = True,
    ) -> None:
        self._headers = dict(headers) if headers else {}
        self._follow_redirects = follow_redirects
        self._client: httpx.AsyncClient | None = None
        # Hook for testing: inject a custom transport
        self._transport: httpx.AsyncBaseTransport | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily create the httpx client on first use."""
        if self._client is None:
            kwargs: dict[str, Any] = {
                "headers": self._headers,
                "follow_redirects": self._follow_redirects,
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def aprobe(self, url: str, *, timeout: float, expected_status: int) -> ProbeResult:
        """Send one GET request to *url*."""
        try:
            response = await self._get_client().get(url, timeout=timeout)
        except httpx.TimeoutException:
            return ProbeResult(healthy=False, detail=f"timed out after {timeout}s")
        except httpx.HTTPError as e:
            logger.debug("Probe of {} failed: {}", url, e)
            return ProbeResult(healthy=False, detail=f"{type(e).__name__}: {e}")

        healthy = response.status_code == expected_status
        return ProbeResult(
            healthy=healthy,
            status_code=response.status_code,
            detail=None if healthy else f"HTTP {response.status_code} (expected {expected_status})",
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
