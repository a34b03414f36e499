"""HTTP transport for ``streamGenerateContent``.

The transport owns the network: it opens a streaming POST and hands the
response body on as raw byte chunks. It knows nothing about the wire
format; decoding is the :class:`~geminal.streaming.StreamDecoder`'s job.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Protocol

import httpx

from geminal.config import ClientConfig
from geminal.errors import ConfigurationError, RateLimitError, TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Anything that can turn a request body into a stream of bytes.

    Implementations raise :class:`~geminal.errors.TransportError` for
    connection failures and non-success statuses, and simply stop
    iterating at end-of-stream.
    """

    def open_stream(self, model: str, body: dict) -> AsyncIterator[bytes]:
        ...


class HttpTransport:
    """Streams responses from the service over ``httpx``.

    Args:
        config: Endpoint, credential and timeout.
        http_transport: Optional ``httpx`` transport, e.g.
            ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._http_transport = http_transport

    def url_for(self, model: str) -> str:
        base = self.config.api_endpoint.rstrip("/")
        return f"{base}/{model}:streamGenerateContent"

    async def open_stream(self, model: str, body: dict) -> AsyncIterator[bytes]:
        if not self.config.is_configured:
            raise ConfigurationError("API key not configured")

        url = self.url_for(model)
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.config.api_key,
        }
        logger.info(f"Opening stream to {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout,
                transport=self._http_transport,
            ) as client:
                async with client.stream(
                    "POST", url, json=body, headers=headers,
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise self._status_error(resp, model, url)
                    async for chunk in resp.aiter_bytes():
                        yield chunk
        except httpx.InvalidURL as e:
            logger.error(f"Invalid endpoint {url}: {e}")
            raise ConfigurationError(
                f"Invalid API endpoint: {e}", model=model, url=url,
            ) from e
        except (httpx.RequestError, httpx.StreamError) as e:
            logger.error(f"Transport failure for {url}: {e!r}")
            raise TransportError(
                f"Connection error: {e}", model=model, url=url,
            ) from e

    @staticmethod
    def _status_error(resp: httpx.Response, model: str, url: str) -> TransportError:
        status = resp.status_code
        message = f"API request failed with status {status}"
        try:
            data = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None
        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                message = str(error["message"])
        logger.error(f"API error {status} from {url}: {message}")

        error_cls = RateLimitError if status == 429 else TransportError
        return error_cls(
            f"{message}\n\nModel: {model}\nEndpoint: {url}",
            status=status, model=model, url=url,
        )
