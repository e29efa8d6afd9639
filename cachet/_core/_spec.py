from __future__ import annotations

import enum
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from typing import (
    Any,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from typing_extensions import Literal

from cachet._core._headers import CacheControl, parse_cache_control
from cachet._core._keygen import DEFAULT_VARY_HEADERS, CacheKeyGenerator
from cachet._core.models import CacheEntry, Request, Response, ResponseMetadata
from cachet._utils import make_sync_iterator, parse_date

DEFAULT_CACHEABLE_STATUS_CODES = (200, 203, 204, 206, 300, 301, 404, 410)
CACHE_STATUS_HEADER = "X-Cache-Status"
StaleKind = Literal["stale-while-revalidate", "stale-if-error"]

logger = logging.getLogger("cachet.core.spec")


class CacheStatus(str, enum.Enum):
    """Informational marker added to responses the cache served or wrote."""

    HIT = "HIT"
    MISS = "MISS"


@dataclass
class CacheOptions:
    """
    Configuration options for HTTP cache behavior.

    Options are built once and then passed around as a value. Per-request
    overrides travel in the request metadata instead of mutating them.

    Attributes:
    ----------
    default_ttl : float | None
        Freshness lifetime used when no directive computes one.

        Default: None (a response without freshness information is stale
        immediately, so it can only be reused after revalidation)

        Examples:
        --------
        >>> # Keep responses without directives for ten minutes
        >>> options = CacheOptions(default_ttl=600)

    respect_cache_headers : bool
        When False, `default_ttl` always wins over the response directives.
        Only `no-store` and the status allow-list are still honoured.

        Default: True

    cache_status_codes : tuple[int, ...]
        Status codes of responses that may be stored.

        Default: (200, 203, 204, 206, 300, 301, 404, 410)

        Examples:
        --------
        >>> # Never cache negative results
        >>> options = CacheOptions(cache_status_codes=(200, 203))

    cache_methods : tuple[str, ...]
        Methods whose requests are looked up and stored. Requests using any
        other method pass through untouched.

        Default: ("GET", "HEAD")

        Examples:
        --------
        >>> # Cache POST responses keyed by their payload
        >>> options = CacheOptions(cache_methods=("GET", "HEAD", "POST"), body_key=True)

    vary_headers : tuple[str, ...]
        Request headers whose values are part of the cache key, in order.

        Default: ("Accept", "Accept-Encoding", "Accept-Language")

    force_refresh : bool
        When True, stored responses are never served. The fresh response is
        still stored afterwards.

        Default: False

    is_shared_cache : bool
        Whether the cache serves more than one user.

        RFC 9111 Section 3.5: Authenticated Responses
        https://www.rfc-editor.org/rfc/rfc9111.html#section-3.5

        - Shared cache (True): `private` responses are not stored, `s-maxage`
          takes precedence over `max-age` and `proxy-revalidate` forbids
          serving stale responses.
        - Private cache (False): `private` responses are stored and `s-maxage`
          is ignored.

        Default: False (private cache)

    stale_while_revalidate : float
        Seconds a stale response may still be served while it is refreshed,
        used when the response carries no `stale-while-revalidate` directive.

        RFC 5861 Section 3
        https://www.rfc-editor.org/rfc/rfc5861.html#section-3

        Default: 0 (disabled)

    stale_if_error : float
        Seconds a stale response may still be served when the network fails,
        used when the response carries no `stale-if-error` directive.

        RFC 5861 Section 4
        https://www.rfc-editor.org/rfc/rfc5861.html#section-4

        Default: 0 (disabled)

    body_key : bool
        When True, the request body is part of the cache key.

        Default: False

    revalidation_window : float | None
        Seconds an expired response with validators is kept after its
        stale windows have passed, so it can still be revalidated with a
        conditional request. None keeps such responses until evicted.

        Default: 604800 (one week)
    """

    default_ttl: Optional[float] = None
    """Freshness lifetime used when no directive computes one."""

    respect_cache_headers: bool = True
    """When False, `default_ttl` wins over the response directives."""

    cache_status_codes: Tuple[int, ...] = DEFAULT_CACHEABLE_STATUS_CODES
    """Status codes of responses that may be stored."""

    cache_methods: Tuple[str, ...] = ("GET", "HEAD")
    """HTTP methods that are allowed to be cached."""

    vary_headers: Tuple[str, ...] = DEFAULT_VARY_HEADERS
    """Request headers whose values are part of the cache key."""

    force_refresh: bool = False
    """When True, stored responses are ignored and replaced."""

    is_shared_cache: bool = False
    """When True, the cache behaves as a shared cache."""

    stale_while_revalidate: float = 0
    """Fallback stale-while-revalidate window, in seconds."""

    stale_if_error: float = 0
    """Fallback stale-if-error window, in seconds."""

    body_key: bool = False
    """When True, the request body is included in the cache key."""

    revalidation_window: Optional[float] = 7 * 24 * 60 * 60
    """How long expired responses with validators are kept, None for no limit."""

    def __post_init__(self) -> None:
        self.cache_status_codes = tuple(self.cache_status_codes)
        self.cache_methods = tuple(method.upper() for method in self.cache_methods)
        self.vary_headers = tuple(self.vary_headers)


@dataclass(frozen=True)
class CacheDisabled:
    """Caching is turned off: requests go to the network and nothing is annotated."""


def resolve_cache_options(
    value: Union[CacheOptions, CacheDisabled, bool, Mapping[str, Any], None],
) -> Union[CacheOptions, CacheDisabled]:
    """
    Convert loose cache configuration into a `CacheOptions` or `CacheDisabled` value.

    `None` and `True` enable caching with defaults, `False` disables it. A mapping
    may carry an `enabled` flag next to any `CacheOptions` field.

    Examples:
        >>> resolve_cache_options(False)
        CacheDisabled()
        >>> resolve_cache_options({"default_ttl": 60}).default_ttl
        60
    """
    if isinstance(value, (CacheOptions, CacheDisabled)):
        return value
    if value is None or value is True:
        return CacheOptions()
    if value is False:
        return CacheDisabled()
    if isinstance(value, Mapping):
        settings = dict(value)
        if not settings.pop("enabled", True):
            return CacheDisabled()
        known = {option.name for option in fields(CacheOptions)}
        unknown = sorted(set(settings) - known)
        if unknown:
            raise ValueError(f"Unknown cache options: {', '.join(unknown)}")
        return CacheOptions(**settings)
    raise TypeError(f"Expected CacheOptions, bool or mapping, got {type(value).__name__}")


CacheableMessage = Union[Response, CacheEntry]


def _cache_control(message: CacheableMessage) -> CacheControl:
    return parse_cache_control(message.headers.get("cache-control"))


class DirectivePolicy:
    """
    Answers storage and reuse questions from the Cache-Control directives.

    Works on anything carrying `status_code` and `headers`, so the same
    policy applies to live responses and to stored entries.
    """

    def __init__(self, cacheable_status_codes: Tuple[int, ...] = DEFAULT_CACHEABLE_STATUS_CODES) -> None:
        self.cacheable_status_codes = tuple(cacheable_status_codes)

    def should_cache(self, response: CacheableMessage, is_shared_cache: bool = False) -> bool:
        cache_control = _cache_control(response)

        if cache_control.no_store:
            logger.debug("Cannot store the response because the no-store cache directive is present")
            return False

        if is_shared_cache and cache_control.private:
            logger.debug("Cannot store the response because shared caches must not store private responses")
            return False

        if response.status_code not in self.cacheable_status_codes:
            logger.debug(f"Cannot store the response because status code {response.status_code} is not cacheable")
            return False

        # no-cache only forces revalidation on reuse
        return True

    def get_ttl(self, response: CacheableMessage, is_shared_cache: bool = False, default: float = 0) -> float:
        """
        Freshness lifetime of the response in seconds.

        Shared caches look at `s-maxage` first, then `max-age` applies, then the
        distance between `Expires` and `Date` (or the current time when `Date`
        is missing). Falls back to `default`.
        """
        ttl = self.get_explicit_ttl(response, is_shared_cache)
        return default if ttl is None else ttl

    def get_explicit_ttl(self, response: CacheableMessage, is_shared_cache: bool = False) -> Optional[float]:
        cache_control = _cache_control(response)

        if is_shared_cache and cache_control.s_maxage is not None:
            return cache_control.s_maxage

        if cache_control.max_age is not None:
            return cache_control.max_age

        expires_header = response.headers.get("expires")
        if expires_header is not None:
            expires = parse_date(expires_header)
            if expires is not None:
                date_header = response.headers.get("date")
                date = parse_date(date_header) if date_header is not None else None
                return max(0, expires - (date if date is not None else time.time()))

        return None

    def get_stale_window(self, response: CacheableMessage, kind: StaleKind) -> Optional[int]:
        cache_control = _cache_control(response)
        if kind == "stale-while-revalidate":
            return cache_control.stale_while_revalidate
        if kind == "stale-if-error":
            return cache_control.stale_if_error
        raise ValueError(f"Unknown stale window: {kind}")

    def requires_revalidation(self, entry: CacheableMessage) -> bool:
        return bool(_cache_control(entry).no_cache)

    def allows_stale(self, entry: CacheableMessage, is_shared_cache: bool = False) -> bool:
        cache_control = _cache_control(entry)
        if cache_control.no_cache or cache_control.must_revalidate:
            return False
        if is_shared_cache and cache_control.proxy_revalidate:
            return False
        return True


def make_conditional_request(request: Request, entry: CacheEntry) -> Request:
    """
    Copy of `request` carrying the validators of the stored entry.

    `If-None-Match` is sent when an ETag was stored and `If-Modified-Since`
    when a Last-Modified date was stored.

    Examples:
    --------
    >>> from cachet import Headers
    >>> request = Request(method="GET", url="https://example.com/resource")
    >>> entry = CacheEntry(status_code=200, headers=Headers({}), body=b"", created_at=0, etag='"abc123"')
    >>> make_conditional_request(request, entry).headers["if-none-match"]
    '"abc123"'
    """
    headers = request.headers.copy()

    if entry.etag is not None:
        headers.set("If-None-Match", entry.etag)

    if entry.last_modified is not None:
        headers.set("If-Modified-Since", entry.last_modified)

    return Request(
        method=request.method,
        url=request.url,
        headers=headers,
        stream=make_sync_iterator([request.read()]),
        metadata=request.metadata,
    )


def annotate(response: Response, status: CacheStatus, metadata: ResponseMetadata) -> Response:
    response.headers.set(CACHE_STATUS_HEADER, status.value)
    response.metadata.update({"cache_status": status.value, **metadata})  # type: ignore
    return response


@dataclass
class State(ABC):
    options: CacheOptions

    @property
    def policy(self) -> DirectivePolicy:
        return DirectivePolicy(self.options.cache_status_codes)

    def stale_window(self, entry: CacheEntry, kind: StaleKind) -> float:
        """Window from the stored directive, else the configured one."""
        if self.options.respect_cache_headers:
            window = self.policy.get_stale_window(entry, kind)
            if window is not None:
                return window
        if kind == "stale-while-revalidate":
            return self.options.stale_while_revalidate
        return self.options.stale_if_error

    def stale_allowed(self, entry: CacheEntry) -> bool:
        if not self.options.respect_cache_headers:
            return True
        return self.policy.allows_stale(entry, self.options.is_shared_cache)

    @abstractmethod
    def next(self, *args: Any, **kwargs: Any) -> Union["State", None]:
        raise NotImplementedError("Subclasses must implement this method")


@dataclass
class IdleClient(State):
    """
    Entry point of the state machine for one request.

    Decides whether the request takes part in caching at all and computes
    the key under which its response is stored.

    State Transitions:
    -----------------
    - Bypass: the method is not cacheable, the request asks for `no-store`,
      or a refresh was forced
    - Lookup: the stored entry (if any) has to be inspected
    """

    def next(self, request: Request) -> Union["Bypass", "Lookup"]:
        metadata = request.metadata

        if request.method.upper() not in self.options.cache_methods:
            logger.debug(f"Bypassing the cache because {request.method} requests are not cached")
            return Bypass(options=self.options, request=request, key=None)

        if parse_cache_control(request.headers.get("cache-control")).no_store:
            logger.debug("Bypassing the cache because the request carries the no-store directive")
            return Bypass(options=self.options, request=request, key=None)

        key = self.cache_key(request)

        if self.options.force_refresh or metadata.get("cache_force_refresh"):
            logger.debug("Bypassing the stored response because a refresh was forced")
            return Bypass(options=self.options, request=request, key=key)

        return Lookup(options=self.options, request=request, key=key)

    def cache_key(self, request: Request) -> str:
        keys = CacheKeyGenerator(vary_headers=self.options.vary_headers)

        custom_key = request.metadata.get("cache_key")
        if custom_key:
            return keys.generate_custom(custom_key)

        body = None
        if self.options.body_key or request.metadata.get("cache_body_key"):
            body = request.read()

        return keys.generate(request.method, request.url, request.headers, body)


@dataclass
class Lookup(State):
    """
    Inspects the entry found under the request key.

    State Transitions:
    -----------------
    - FromCache: the entry is fresh and does not demand revalidation
    - ServeStaleAndRefresh: the entry is within its stale-while-revalidate window
    - NeedRevalidation: the entry is stale but carries validators
    - CacheMiss: no entry, or a stale one that cannot be validated
    """

    request: Request
    key: str

    def next(
        self, entry: Optional[CacheEntry], now: Optional[float] = None
    ) -> Union["FromCache", "ServeStaleAndRefresh", "NeedRevalidation", "CacheMiss"]:
        now = time.time() if now is None else now

        if entry is None:
            logger.debug("No stored response found for the request")
            return CacheMiss(options=self.options, request=self.request, key=self.key)

        policy = self.policy
        must_revalidate = self.options.respect_cache_headers and policy.requires_revalidation(entry)

        if entry.is_fresh(now) and not must_revalidate:
            logger.debug("Found a fresh stored response")
            return FromCache(options=self.options, entry=entry)

        if self.stale_allowed(entry) and entry.is_usable_as_stale(
            self.stale_window(entry, "stale-while-revalidate"), now
        ):
            logger.debug("Serving a stale response while it gets refreshed")
            return ServeStaleAndRefresh(options=self.options, request=self.request, key=self.key, entry=entry)

        if entry.has_validators:
            logger.debug("Stored response needs revalidation")
            return NeedRevalidation(
                options=self.options,
                request=make_conditional_request(self.request, entry),
                original_request=self.request,
                key=self.key,
                entry=entry,
            )

        logger.debug("Stored response is stale and cannot be revalidated")
        return CacheMiss(options=self.options, request=self.request, key=self.key, stale_entry=entry)


@dataclass
class SendingState(State):
    """Base for states that hand a request to the transport."""

    def fallback(self, now: Optional[float] = None) -> Optional["FromStale"]:
        """
        Stale replacement for a failed transport call, if one is allowed.

        The entry must not forbid stale use and must be within its
        stale-if-error window.
        """
        entry = self.stored_entry
        if entry is None:
            return None

        now = time.time() if now is None else now
        if not self.stale_allowed(entry):
            return None
        if not entry.is_usable_as_stale(self.stale_window(entry, "stale-if-error"), now):
            return None

        logger.debug("Serving a stale response because the transport failed")
        return FromStale(options=self.options, entry=entry)

    @property
    def stored_entry(self) -> Optional[CacheEntry]:
        return None

    def evaluate(
        self, request: Request, key: str, response: Response, now: Optional[float], revalidated: bool = False
    ) -> Union["StoreAndUse", "CouldNotBeStored"]:
        options = self.options
        policy = self.policy

        if options.respect_cache_headers:
            storable = policy.should_cache(response, options.is_shared_cache)
        else:
            storable = (
                not parse_cache_control(response.headers.get("cache-control")).no_store
                and response.status_code in options.cache_status_codes
            )

        if not storable:
            return CouldNotBeStored(
                options=options,
                response=response,
                key=key,
                invalidate=parse_cache_control(response.headers.get("cache-control")).no_store,
                revalidated=revalidated,
            )

        ttl = self.response_ttl(request, response)
        entry = CacheEntry.from_response(response, ttl, now)
        logger.debug(f"Storing response in cache for {ttl} seconds")
        return StoreAndUse(
            options=options,
            response=response,
            key=key,
            entry=entry,
            retention=self.retention(entry),
            revalidated=revalidated,
        )

    def response_ttl(
        self, request: Request, response: Response, previous: Optional[CacheEntry] = None
    ) -> Optional[float]:
        """
        Freshness lifetime for a response about to be stored.

        A 304 without freshness information keeps the lifetime of the
        `previous` entry it refreshes.
        """
        override = request.metadata.get("cache_ttl")
        if override is not None:
            return float(override)

        default = self.options.default_ttl or 0
        if not self.options.respect_cache_headers:
            return default

        ttl = self.policy.get_explicit_ttl(response, self.options.is_shared_cache)
        if ttl is not None:
            return ttl
        if previous is not None:
            return previous.ttl
        return default

    def retention(self, entry: CacheEntry) -> Optional[float]:
        """
        How long the store keeps the entry.

        The freshness lifetime plus the longest window in which the expired
        entry is still useful. Entries with validators also count the
        revalidation window, when that is None they stay until evicted.
        """
        windows = [
            self.stale_window(entry, "stale-while-revalidate"),
            self.stale_window(entry, "stale-if-error"),
        ]
        if entry.has_validators:
            if self.options.revalidation_window is None:
                return None
            windows.append(self.options.revalidation_window)
        return (entry.ttl or 0) + max(windows)


@dataclass
class Bypass(SendingState):
    """
    The request is sent without looking at the store.

    When `key` is None the request does not take part in caching at all and
    the response is returned untouched. Otherwise the response is evaluated
    for storage as usual.
    """

    request: Request
    key: Optional[str]

    def next(self, response: Response, now: Optional[float] = None) -> Union["StoreAndUse", "CouldNotBeStored"]:
        assert self.key is not None, "Uncacheable requests have no next state"
        return self.evaluate(self.request, self.key, response, now)


@dataclass
class CacheMiss(SendingState):
    """
    Nothing usable is stored, the response is fetched and evaluated for storage.

    State Transitions:
    -----------------
    - StoreAndUse: the response is storable
    - CouldNotBeStored: the response is not storable
    """

    request: Request
    key: str
    stale_entry: Optional[CacheEntry] = None
    """Expired entry without validators, still a candidate for stale-if-error."""

    @property
    def stored_entry(self) -> Optional[CacheEntry]:
        return self.stale_entry

    def next(self, response: Response, now: Optional[float] = None) -> Union["StoreAndUse", "CouldNotBeStored"]:
        return self.evaluate(self.request, self.key, response, now)


@dataclass
class NeedRevalidation(SendingState):
    """
    A stale entry is checked with the origin using a conditional request.

    State Transitions:
    -----------------
    - Revalidated: the origin answered 304 Not Modified
    - StoreAndUse / CouldNotBeStored: any other answer replaces the entry
    """

    request: Request
    """The conditional request to send."""

    original_request: Request
    key: str
    entry: CacheEntry

    @property
    def stored_entry(self) -> Optional[CacheEntry]:
        return self.entry

    def next(
        self, response: Response, now: Optional[float] = None
    ) -> Union["Revalidated", "StoreAndUse", "CouldNotBeStored"]:
        if response.status_code != 304:
            logger.debug(f"Revalidation returned {response.status_code}, replacing the stored response")
            return self.evaluate(self.original_request, self.key, response, now, revalidated=True)

        ttl = self.response_ttl(self.original_request, response, previous=self.entry)
        refreshed = self.entry.refreshed(response, ttl, now)
        logger.debug("Stored response is still valid, refreshing it")
        return Revalidated(options=self.options, key=self.key, entry=refreshed, retention=self.retention(refreshed))


@dataclass
class ServeStaleAndRefresh(State):
    """
    The stale entry is served, and refreshed on the same request.

    `refresh` returns the state that fetches the replacement, `next` the
    state that serves the stale response.
    """

    request: Request
    key: str
    entry: CacheEntry

    def refresh(self) -> Union[NeedRevalidation, CacheMiss]:
        if self.entry.has_validators:
            return NeedRevalidation(
                options=self.options,
                request=make_conditional_request(self.request, self.entry),
                original_request=self.request,
                key=self.key,
                entry=self.entry,
            )
        return CacheMiss(options=self.options, request=self.request, key=self.key, stale_entry=self.entry)

    def next(self) -> "FromStale":
        return FromStale(options=self.options, entry=self.entry)


@dataclass
class StoreAndUse(State):
    """
    The response is written under `key` and then returned.

    Attributes:
    ----------
    entry : CacheEntry
        The entry to store.
    retention : float | None
        Storage retention in seconds, None to keep the entry until evicted.
    """

    response: Response
    key: str
    entry: CacheEntry
    retention: Optional[float] = None
    revalidated: bool = False

    def __post_init__(self) -> None:
        annotate(
            self.response,
            CacheStatus.MISS,
            ResponseMetadata(
                cache_created_at=self.entry.created_at,
                cache_from_cache=False,
                cache_revalidated=self.revalidated,
                cache_stale=False,
                cache_stored=True,
            ),
        )

    def next(self) -> None:
        return None


@dataclass
class CouldNotBeStored(State):
    """
    The response is returned without being stored.

    When `invalidate` is set the response forbade storage, so whatever
    is stored under `key` has to go as well.
    """

    response: Response
    key: str
    invalidate: bool = False
    revalidated: bool = False

    def __post_init__(self) -> None:
        annotate(
            self.response,
            CacheStatus.MISS,
            ResponseMetadata(
                cache_created_at=time.time(),
                cache_from_cache=False,
                cache_revalidated=self.revalidated,
                cache_stale=False,
                cache_stored=False,
            ),
        )

    def next(self) -> None:
        return None


@dataclass
class Revalidated(State):
    """The origin confirmed the stored body, the refreshed entry replaces the old one."""

    key: str
    entry: CacheEntry
    retention: Optional[float] = None
    response: Response = field(init=False)

    def __post_init__(self) -> None:
        self.response = annotate(
            self.entry.to_response(),
            CacheStatus.HIT,
            ResponseMetadata(
                cache_created_at=self.entry.created_at,
                cache_from_cache=True,
                cache_revalidated=True,
                cache_stale=False,
                cache_stored=True,
            ),
        )

    def next(self) -> None:
        return None


@dataclass
class FromCache(State):
    entry: CacheEntry
    response: Response = field(init=False)

    def __post_init__(self) -> None:
        self.response = annotate(
            self.entry.to_response(),
            CacheStatus.HIT,
            ResponseMetadata(
                cache_created_at=self.entry.created_at,
                cache_from_cache=True,
                cache_revalidated=False,
                cache_stale=False,
                cache_stored=False,
            ),
        )

    def next(self) -> None:
        return None


@dataclass
class FromStale(State):
    """A stale entry is served in place of a live response."""

    entry: CacheEntry
    response: Response = field(init=False)

    def __post_init__(self) -> None:
        self.response = annotate(
            self.entry.to_response(),
            CacheStatus.HIT,
            ResponseMetadata(
                cache_created_at=self.entry.created_at,
                cache_from_cache=True,
                cache_revalidated=False,
                cache_stale=True,
                cache_stored=False,
            ),
        )

    def next(self) -> None:
        return None


AnyState = Union[
    IdleClient,
    Lookup,
    Bypass,
    CacheMiss,
    NeedRevalidation,
    ServeStaleAndRefresh,
    StoreAndUse,
    CouldNotBeStored,
    Revalidated,
    FromCache,
    FromStale,
]
