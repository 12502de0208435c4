"""Outbound HTTP with a hard timeout and uniform auth headers."""

import asyncio
import json
import logging
from typing import Any

import httpx

from finchat.errors import DecodeError, FetchTimeout, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class FetchClient:
    """Thin async wrapper around :class:`httpx.AsyncClient`.

    Every request carries the ``X-API-KEY`` header. Failures are raised
    as :class:`~finchat.errors.FetchTimeout`,
    :class:`~finchat.errors.UpstreamError` or
    :class:`~finchat.errors.DecodeError`; tool wrappers turn them into
    data before they reach the orchestration loop.

    Args:
        api_key: Financial data API key.
        base_url: Prefix for relative request paths.
        timeout: Default per-call budget in seconds.
        transport: Optional transport, used by tests to stub the network.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
        )

    def _headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers = {"X-API-KEY": self.api_key}
        if extra:
            headers.update(extra)
        return headers

    async def fetch_json(
        self,
        url: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Issue one request and return the decoded JSON body.

        Raises:
            FetchTimeout: The call exceeded *timeout* (or the default).
            UpstreamError: The response status was not 2xx.
            DecodeError: The body was not valid JSON.
        """
        budget = self.timeout if timeout is None else timeout
        # httpx bounds each phase separately; wait_for bounds the whole call,
        # body included.
        request = self._client.request(
            method,
            url,
            params=params,
            json=json_body,
            headers=self._headers(headers),
            timeout=budget,
        )
        try:
            response = await asyncio.wait_for(request, timeout=budget)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise FetchTimeout(f"{method} {url} timed out after {budget}s") from e

        if not response.is_success:
            raise UpstreamError(response.status_code)

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Malformed JSON from {url}: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
