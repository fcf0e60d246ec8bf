"""REST destinations over a shared httpx client."""

from __future__ import annotations

import logging
import time
from typing import Mapping, Optional

import httpx

from ..config import RestDestinationConfig
from ..contracts import DestinationRef
from .base import AdapterResult, DestinationAdapter, DestinationRequest, RestRequest

logger = logging.getLogger(__name__)


class RestAdapter(DestinationAdapter):
    """Send payloads to configured REST destinations."""

    def __init__(
        self,
        destinations: Optional[Mapping[int, RestDestinationConfig]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._destinations = dict(destinations or {})
        self._client = httpx.AsyncClient(transport=transport)

    def _url(self, config: RestDestinationConfig, path: Optional[str]) -> str:
        if not path:
            return config.base_url
        return f"{config.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def execute(
        self, destination: DestinationRef, request: DestinationRequest
    ) -> AdapterResult:
        if not isinstance(request, RestRequest):
            return AdapterResult(success=False, error="REST destinations take requests")
        config = self._destinations.get(destination.id)
        if config is None:
            return AdapterResult(
                success=False, error=f"no connection configured for {destination}"
            )

        method = (request.method or config.method).upper()
        headers = {**config.headers, **request.headers}
        if config.auth_token:
            headers.setdefault("Authorization", f"Bearer {config.auth_token}")

        started = time.perf_counter()
        try:
            response = await self._client.request(
                method,
                self._url(config, request.path),
                json=request.body if method != "GET" else None,
                params=request.body if method == "GET" and isinstance(request.body, dict) else None,
                headers=headers,
                timeout=config.timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Request to {destination} failed: {e}")
            return AdapterResult(
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                error=str(e) or type(e).__name__,
            )

        latency = (time.perf_counter() - started) * 1000
        try:
            data = response.json()
        except ValueError:
            data = response.text

        if not response.is_success:
            return AdapterResult(
                success=False,
                http_status=response.status_code,
                latency_ms=latency,
                error=f"{method} {response.url} returned HTTP {response.status_code}",
                data=data,
            )
        return AdapterResult(
            success=True, http_status=response.status_code, latency_ms=latency, data=data
        )

    async def close(self) -> None:
        await self._client.aclose()
