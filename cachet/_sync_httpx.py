from __future__ import annotations

import ssl
import typing as t
from typing import (
    Iterable,
    Iterator,
    Union,
    cast,
    overload,
)

from cachet._core._headers import Headers
from cachet._core._storages import BaseStorage
from cachet._core.models import Request, RequestMetadata, Response
from cachet._sync_cache import CacheConfig, SyncCacheProxy
from cachet._utils import (
    filter_mapping,
    make_sync_iterator,
)

try:
    import httpx
    from httpx import RequestNotRead
except ImportError as e:
    raise ImportError(
        "httpx is required to use cachet.httpx module. Please install it, e.g., 'pip install httpx'."
    ) from e

# 128 KB
CHUNK_SIZE = 131072

# Per-request options understood by the cache, passed as httpx request extensions
REQUEST_EXTENSIONS = (
    "cache_force_refresh",
    "cache_key",
    "cache_ttl",
    "cache_disabled",
    "cache_body_key",
)


@overload
def _internal_to_httpx(
    value: Request,
) -> httpx.Request: ...
@overload
def _internal_to_httpx(
    value: Response,
) -> httpx.Response: ...
def _internal_to_httpx(
    value: Union[Request, Response],
) -> Union[httpx.Request, httpx.Response]:
    """
    Convert internal Request/Response to httpx.Request/httpx.Response.
    """
    if isinstance(value, Request):
        return httpx.Request(
            method=value.method,
            url=value.url,
            headers=value.headers.multi_items(),
            stream=_IteratorStream(value._iter_stream()),
            extensions=dict(value.metadata),
        )
    return httpx.Response(
        status_code=value.status_code,
        headers=value.headers.multi_items(),
        stream=_IteratorStream(value._iter_stream()),
        extensions=dict(value.metadata),
    )


@overload
def _httpx_to_internal(
    value: httpx.Request,
) -> Request: ...
@overload
def _httpx_to_internal(
    value: httpx.Response,
) -> Response: ...
def _httpx_to_internal(
    value: Union[httpx.Request, httpx.Response],
) -> Union[Request, Response]:
    """
    Convert httpx.Request/httpx.Response to internal Request/Response.
    """
    headers = Headers()
    for key, header_value in value.headers.multi_items():
        if key.lower() != "transfer-encoding":
            headers[key] = header_value

    if isinstance(value, httpx.Request):
        metadata = RequestMetadata()
        for key in REQUEST_EXTENSIONS:
            if value.extensions.get(key) is not None:
                metadata[key] = value.extensions[key]  # type: ignore[literal-required]

        try:
            stream = make_sync_iterator([value.content])
        except RequestNotRead:
            stream = cast(Iterator[bytes], value.stream)

        return Request(
            method=value.method,
            url=str(value.url),
            headers=headers,
            stream=stream,
            metadata=metadata,
        )

    stream = make_sync_iterator([value.content]) if value.is_stream_consumed else value.iter_raw(chunk_size=CHUNK_SIZE)

    if value.is_stream_consumed and "content-encoding" in value.headers:
        # The decoded content is all that is left, so drop the encoding
        # and describe the decoded body instead.
        headers = Headers(
            {
                **filter_mapping(headers.to_dict(), ["content-encoding", "content-length"]),
                "content-length": str(len(value.content)),
            }
        )

    return Response(
        status_code=value.status_code,
        headers=headers,
        stream=stream,
        metadata={},
    )


class _IteratorStream(httpx.SyncByteStream):
    def __init__(self, iterator: Iterator[bytes]) -> None:
        self.iterator = iterator

    def __iter__(self) -> Iterator[bytes]:
        assert isinstance(self.iterator, (Iterator, Iterable))
        for chunk in self.iterator:
            yield chunk


class SyncCacheTransport(httpx.BaseTransport):
    """
    An httpx transport that answers requests from the cache when it can.

    Wraps any other transport, which is only called for the requests the
    cache cannot answer on its own.
    """

    def __init__(
        self,
        next_transport: httpx.BaseTransport,
        storage: BaseStorage | None = None,
        options: CacheConfig = None,
    ) -> None:
        self.next_transport = next_transport
        self._cache_proxy: SyncCacheProxy = SyncCacheProxy(
            request_sender=self.request_sender,
            storage=storage,
            options=options,
            transport_errors=(httpx.TransportError,),
        )
        self.storage = self._cache_proxy.storage

    @property
    def cache(self) -> SyncCacheProxy:
        return self._cache_proxy

    def handle_request(
        self,
        request: httpx.Request,
    ) -> httpx.Response:
        internal_request = _httpx_to_internal(request)
        internal_response = self._cache_proxy.handle_request(internal_request)
        response = _internal_to_httpx(internal_response)
        return response

    def close(self) -> None:
        self.next_transport.close()
        self.storage.close()
        super().close()

    def request_sender(self, request: Request) -> Response:
        httpx_request = _internal_to_httpx(request)
        httpx_response = self.next_transport.handle_request(httpx_request)
        if httpx_response.status_code == 304:
            # 304 should not have a body, but we read it to ensure we'll not let the stream unconsumed
            httpx_response.read()
        return _httpx_to_internal(httpx_response)


class SyncCacheClient(httpx.Client):
    def __init__(self, *args: t.Any, **kwargs: t.Any) -> None:
        self.storage: BaseStorage | None = kwargs.pop("storage", None)
        self.cache_options: CacheConfig = kwargs.pop("cache_options", None)
        super().__init__(*args, **kwargs)

    def _init_transport(
        self,
        verify: ssl.SSLContext | str | bool = True,
        cert: t.Union[str, t.Tuple[str, str], t.Tuple[str, str, str], None] = None,
        trust_env: bool = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = httpx.Limits(max_connections=100, max_keepalive_connections=20),
        transport: httpx.BaseTransport | None = None,
        **kwargs: t.Any,
    ) -> httpx.BaseTransport:
        if transport is not None:
            return transport

        return SyncCacheTransport(
            next_transport=httpx.HTTPTransport(
                verify=verify,
                cert=cert,
                trust_env=trust_env,
                http1=http1,
                http2=http2,
                limits=limits,
            ),
            storage=self.storage,
            options=self.cache_options,
        )

    def _init_proxy_transport(
        self,
        proxy: httpx.Proxy,
        verify: ssl.SSLContext | str | bool = True,
        cert: t.Union[str, t.Tuple[str, str], t.Tuple[str, str, str], None] = None,
        trust_env: bool = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = httpx.Limits(max_connections=100, max_keepalive_connections=20),
        **kwargs: t.Any,
    ) -> httpx.BaseTransport:
        return SyncCacheTransport(
            next_transport=httpx.HTTPTransport(
                verify=verify,
                cert=cert,
                trust_env=trust_env,
                http1=http1,
                http2=http2,
                limits=limits,
                proxy=proxy,
            ),
            storage=self.storage,
            options=self.cache_options,
        )
