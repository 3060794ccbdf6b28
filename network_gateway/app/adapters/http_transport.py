"""
HTTP transport for the gateway, backed by httpx.
"""

from typing import Any, Mapping, Optional

import httpx

from shared.logging import get_logger
from shared.errors import (
    TransportError,
    TransportTimeoutError,
    TransportConnectionError,
)
from .transport import RawResult, TimeoutConfig


class HttpTransport:
    """Transport implementation performing requests with ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[TimeoutConfig] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout or TimeoutConfig()
        self.logger = get_logger("gateway.http_transport")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._to_httpx_timeout(self.timeout),
            headers=dict(headers or {}),
        )

    @staticmethod
    def _to_httpx_timeout(timeout: TimeoutConfig) -> httpx.Timeout:
        # httpx calls the send phase "write" and the receive phase "read"
        return httpx.Timeout(
            connect=timeout.connect,
            write=timeout.send,
            read=timeout.receive,
            pool=timeout.connect,
        )

    async def perform(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        *,
        timeout: Optional[TimeoutConfig] = None,
    ) -> RawResult:
        """Perform a request, returning a RawResult for any HTTP status."""
        request_kwargs = {"params": dict(params) if params else None}
        if body is not None:
            request_kwargs["json"] = body
        if timeout is not None:
            request_kwargs["timeout"] = self._to_httpx_timeout(timeout)

        try:
            response = await self._client.request(method.upper(), path, **request_kwargs)
        except httpx.ConnectTimeout as exc:
            raise TransportTimeoutError("connect", str(exc) or None, {"path": path}) from exc
        except httpx.PoolTimeout as exc:
            raise TransportTimeoutError("connect", str(exc) or None, {"path": path, "pool": True}) from exc
        except httpx.WriteTimeout as exc:
            raise TransportTimeoutError("send", str(exc) or None, {"path": path}) from exc
        except httpx.ReadTimeout as exc:
            raise TransportTimeoutError("receive", str(exc) or None, {"path": path}) from exc
        except httpx.ConnectError as exc:
            raise TransportConnectionError(str(exc) or "Connection could not be established",
                                           {"path": path}) from exc
        except httpx.HTTPError as exc:
            self.logger.error("HTTP transport error", method=method, path=path, error=str(exc))
            raise TransportError(str(exc) or type(exc).__name__, {"path": path,
                                                                  "error_type": type(exc).__name__}) from exc

        self.logger.debug(
            "Transport response received",
            method=method,
            path=path,
            status_code=response.status_code,
        )
        return RawResult(
            status_code=response.status_code,
            body=self._decode_body(response),
            headers=dict(response.headers),
        )

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()
