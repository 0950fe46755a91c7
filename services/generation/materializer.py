"""
AssetMaterializer - turns a remote result reference into durable bytes.

Provider result URLs are usually short-lived and often blocked by CORS or
hotlink rules, so the materializer tries in order:

1. A trusted intermediary that fetches and encodes server-side
2. A direct fetch
3. The direct fetch again, up to a fixed number of retries
4. Give up and return the original reference unchanged

Materialization never fails a job. A successful job with an unmaterialized
reference is still a success.
"""

import asyncio
import base64
import logging
from typing import Optional, Union

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from core.config import MaterializerConfig

logger = logging.getLogger(__name__)


# Errors that fail a single strategy. binascii.Error is a ValueError.
_STRATEGY_ERRORS = (httpx.HTTPError, asyncio.TimeoutError, ValueError)


def decode_data_uri(uri: str) -> bytes:
    """Decode a ``data:<mime>;base64,<payload>`` URI."""
    header, sep, payload = uri.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("not a base64 data URI")
    return base64.b64decode(payload, validate=True)


class AssetMaterializer:
    """
    Fetches and encodes generated assets.

    Usage:
        materializer = AssetMaterializer(MaterializerConfig(proxy_url="https://..."))
        asset = await materializer.materialize("https://cdn.example.com/out.mp4")
        if isinstance(asset, bytes):
            Path("out.mp4").write_bytes(asset)
    """

    def __init__(
        self,
        config: Optional[MaterializerConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or MaterializerConfig()
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(follow_redirects=True)
            self._owns_client = True
        return self._http_client

    async def close(self):
        """Close the HTTP client if this materializer created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def materialize(self, result_ref: str) -> Union[bytes, str]:
        """
        Produce a durable payload for ``result_ref``.

        Returns:
            The asset bytes, or ``result_ref`` itself when it is already a
            data URI or when every strategy failed.
        """
        if result_ref.startswith("data:"):
            return result_ref

        if self.config.proxy_url:
            try:
                data = await asyncio.wait_for(
                    self._fetch_via_proxy(result_ref),
                    timeout=self.config.proxy_timeout,
                )
                logger.info(f"Materialized via proxy ({len(data)} bytes)")
                return data
            except _STRATEGY_ERRORS as e:
                logger.warning(f"Proxy materialization failed: {type(e).__name__}: {e}")

        fetch = retry(
            stop=stop_after_attempt(1 + max(self.config.direct_retries, 0)),
            wait=wait_fixed(self.config.retry_delay),
            retry=retry_if_exception_type(_STRATEGY_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )(self._fetch_direct_with_timeout)

        try:
            data = await fetch(result_ref)
            logger.info(f"Materialized via direct fetch ({len(data)} bytes)")
            return data
        except _STRATEGY_ERRORS as e:
            logger.warning(
                f"Direct materialization failed after {1 + self.config.direct_retries} attempts: "
                f"{type(e).__name__}: {e}. Returning original reference."
            )

        return result_ref

    async def _fetch_via_proxy(self, url: str) -> bytes:
        """Ask the intermediary to fetch ``url`` and return its bytes."""
        client = await self._get_client()
        response = await client.post(
            self.config.proxy_url,
            json={"url": url},
            timeout=self.config.proxy_timeout,
        )
        response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            body = response.json()
            data = body.get("data") if isinstance(body, dict) else None
            if not data or not isinstance(data, str):
                error = body.get("error") if isinstance(body, dict) else None
                raise ValueError(f"proxy returned no usable data: {error or body}")
            if data.startswith("data:"):
                return decode_data_uri(data)
            return base64.b64decode(data, validate=True)

        if not response.content:
            raise ValueError("proxy returned an empty body")
        return response.content

    async def _fetch_direct_with_timeout(self, url: str) -> bytes:
        return await asyncio.wait_for(self._fetch_direct(url), timeout=self.config.direct_timeout)

    async def _fetch_direct(self, url: str) -> bytes:
        client = await self._get_client()
        response = await client.get(url, timeout=self.config.direct_timeout)
        response.raise_for_status()
        if not response.content:
            raise ValueError("empty response body")
        return response.content
