from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    TypedDict,
    cast,
)

from cachet._core._headers import Headers
from cachet._utils import make_sync_iterator

# Hop-by-hop and framing headers that must never be copied from a 304 onto the stored entry
NOT_MODIFIED_SKIP_HEADERS = (
    "content-length",
    "content-encoding",
    "transfer-encoding",
    "content-type",
    "content-range",
    "connection",
    "keep-alive",
    "te",
    "upgrade",
    "proxy-connection",
)


class AnyIterable:
    def __init__(self, content: bytes | None = None) -> None:
        self.consumed = False
        self.content = content

    def __next__(self) -> bytes:
        if self.content is not None and not self.consumed:
            self.consumed = True
            return self.content
        raise StopIteration()

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __eq__(self, value: Any) -> bool:
        return isinstance(value, AnyIterable)


class RequestMetadata(TypedDict, total=False):
    # All the names here should be prefixed with "cache_" to avoid collisions with user data
    cache_force_refresh: bool
    """When True, the stored response is ignored and the fresh one is cached."""

    cache_key: str
    """Custom key name, used instead of the key derived from the request."""

    cache_ttl: float
    """Overrides the freshness lifetime computed from the response headers."""

    cache_disabled: bool
    """When True, the request goes straight to the network and nothing is annotated."""

    cache_body_key: bool
    """
    When True, the request body is included in the cache key generation.
    This is useful for caching POST or QUERY requests with different bodies.
    """


class ResponseMetadata(TypedDict, total=False):
    # All the names here should be prefixed with "cache_" to avoid collisions with user data
    cache_status: str
    """Either "HIT" or "MISS", mirrors the X-Cache-Status header."""

    cache_from_cache: bool
    """Indicates whether the response was served from cache."""

    cache_revalidated: bool
    """Indicates whether the response was revalidated with the origin server."""

    cache_stale: bool
    """Indicates whether a stale response was served."""

    cache_stored: bool
    """Indicates whether the response was stored in cache."""

    cache_created_at: float
    """Timestamp when the response was cached."""


@dataclass
class Request:
    method: str
    url: str
    headers: Headers = field(default_factory=lambda: Headers({}))
    stream: Iterator[bytes] = field(default_factory=lambda: iter(AnyIterable()))
    metadata: RequestMetadata | Mapping[str, Any] = field(default_factory=dict)

    def _iter_stream(self) -> Iterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        if isinstance(self.stream, (Iterator, Iterable)):
            yield from self.stream
            return
        raise TypeError("Request stream is not an Iterator")

    def read(self) -> bytes:
        """
        Synchronously reads the entire request body without consuming the stream.
        """
        if hasattr(self, "collected_body"):
            return cast(bytes, getattr(self, "collected_body"))

        if not isinstance(self.stream, (Iterator, Iterable)):
            raise TypeError("Request stream is not an Iterator")

        collected = b"".join([chunk for chunk in self.stream])
        setattr(self, "collected_body", collected)
        self.stream = make_sync_iterator([collected])
        return collected


@dataclass
class Response:
    status_code: int
    headers: Headers = field(default_factory=lambda: Headers({}))
    stream: Iterator[bytes] = field(default_factory=lambda: iter(AnyIterable()))
    metadata: ResponseMetadata | Mapping[str, Any] = field(default_factory=dict)

    def _iter_stream(self) -> Iterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        if isinstance(self.stream, (Iterator, Iterable)):
            yield from self.stream
            return
        raise TypeError("Response stream is not an Iterator")

    def read(self) -> bytes:
        """
        Synchronously reads the entire response body without consuming the stream.
        """
        if hasattr(self, "collected_body"):
            return cast(bytes, getattr(self, "collected_body"))

        if not isinstance(self.stream, (Iterator, Iterable)):
            raise TypeError("Response stream is not an Iterator")

        collected = b"".join([chunk for chunk in self.stream])
        setattr(self, "collected_body", collected)
        self.stream = make_sync_iterator([collected])
        return collected


def merge_not_modified_headers(stored: Headers, not_modified: Headers) -> Headers:
    """
    Update stored headers with the ones carried by a 304 response.

    Framing and hop-by-hop headers of the 304 describe the empty 304 message
    itself, so they never replace the stored ones.
    """
    merged = stored.copy()
    for name, values in not_modified.to_dict().items():
        if name in NOT_MODIFIED_SKIP_HEADERS:
            continue
        if name in merged:
            del merged[name]
        for value in values:
            merged[name] = value
    return merged


@dataclass(frozen=True)
class CacheEntry:
    """
    A stored response together with its freshness bookkeeping.

    Entries are values. Revalidation never re-dates an entry in place, it
    builds a new one with `refreshed` which then replaces the old entry
    under the same key.

    Attributes:
        status_code: Status code of the stored response.
        headers: Response headers as they were received.
        body: The complete response body.
        created_at: When the response was received (seconds since the epoch).
        expires_at: When the response stops being fresh, None when it was
            stored without a freshness lifetime.
        etag: Validator taken from the ETag header.
        last_modified: Validator taken from the Last-Modified header.
        metadata: Free-form data kept next to the entry.
    """

    status_code: int
    headers: Headers
    body: bytes
    created_at: float
    expires_at: Optional[float] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, response: Response, ttl: Optional[float], now: Optional[float] = None) -> "CacheEntry":
        created_at = time.time() if now is None else now
        return cls(
            status_code=response.status_code,
            headers=response.headers.copy(),
            body=response.read(),
            created_at=created_at,
            expires_at=None if ttl is None else created_at + ttl,
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
        )

    @property
    def ttl(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return self.expires_at - self.created_at

    @property
    def has_validators(self) -> bool:
        return self.etag is not None or self.last_modified is not None

    def is_fresh(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at is not None and now < self.expires_at

    def is_expired(self, now: Optional[float] = None) -> bool:
        # An entry without a lifetime can only be revalidated, never served as is
        return not self.is_fresh(now)

    def get_age(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, now - self.created_at)

    def remaining_ttl(self, now: Optional[float] = None) -> Optional[float]:
        if self.expires_at is None:
            return None
        now = time.time() if now is None else now
        return max(0.0, self.expires_at - now)

    def is_usable_as_stale(self, stale_window: Optional[float], now: Optional[float] = None) -> bool:
        """
        Whether the entry is expired, but not by more than `stale_window` seconds.

        Staleness of an entry stored without a lifetime is measured from `created_at`.
        """
        if not stale_window or stale_window <= 0:
            return False
        now = time.time() if now is None else now
        if not self.is_expired(now):
            return False
        stale_since = self.expires_at if self.expires_at is not None else self.created_at
        return now - stale_since <= stale_window

    def refreshed(self, not_modified: Response, ttl: Optional[float], now: Optional[float] = None) -> "CacheEntry":
        """Build the entry that replaces this one after a 304 Not Modified."""
        created_at = time.time() if now is None else now
        return replace(
            self,
            headers=merge_not_modified_headers(self.headers, not_modified.headers),
            created_at=created_at,
            expires_at=None if ttl is None else created_at + ttl,
            etag=not_modified.headers.get("etag", self.etag),
            last_modified=not_modified.headers.get("last-modified", self.last_modified),
            metadata=dict(self.metadata),
        )

    def copy(self) -> "CacheEntry":
        return replace(self, headers=self.headers.copy(), metadata=dict(self.metadata))

    def to_response(self) -> Response:
        return Response(
            status_code=self.status_code,
            headers=self.headers.copy(),
            stream=make_sync_iterator([self.body]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status_code": self.status_code,
            "headers": self.headers.to_dict(),
            "body": self.body,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "etag": self.etag,
            "last_modified": self.last_modified,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CacheEntry"]:
        """
        Rebuild an entry from `to_dict` output.

        Unknown keys are ignored and missing optional keys default to None.
        Returns None when a required key is missing or has the wrong type.
        """
        if not isinstance(data, Mapping):
            return None

        status_code = data.get("status_code")
        headers = data.get("headers")
        body = data.get("body")
        created_at = data.get("created_at")
        expires_at = data.get("expires_at")

        if not isinstance(status_code, int) or isinstance(status_code, bool):
            return None
        if not isinstance(headers, Mapping) or not isinstance(body, (bytes, bytearray)):
            return None
        if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
            return None
        if expires_at is not None and not isinstance(expires_at, (int, float)):
            return None

        header_values: Dict[str, List[str]] = {}
        for name, values in headers.items():
            if isinstance(values, str):
                values = [values]
            if not isinstance(name, str) or not isinstance(values, (list, tuple)):
                return None
            if not all(isinstance(value, str) for value in values):
                return None
            header_values[name] = list(values)

        etag = data.get("etag")
        last_modified = data.get("last_modified")
        metadata = data.get("metadata")

        return cls(
            status_code=status_code,
            headers=Headers(header_values),
            body=bytes(body),
            created_at=float(created_at),
            expires_at=None if expires_at is None else float(expires_at),
            etag=etag if isinstance(etag, str) else None,
            last_modified=last_modified if isinstance(last_modified, str) else None,
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )
