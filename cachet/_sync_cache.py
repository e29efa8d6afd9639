from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Tuple, Type, Union

from typing_extensions import assert_never

from cachet._core._spec import (
    AnyState,
    Bypass,
    CacheDisabled,
    CacheMiss,
    CacheOptions,
    CacheStatus,
    CouldNotBeStored,
    FromCache,
    FromStale,
    IdleClient,
    Lookup,
    NeedRevalidation,
    Revalidated,
    ServeStaleAndRefresh,
    StoreAndUse,
    resolve_cache_options,
)
from cachet._core._storages import BaseStorage, InMemoryStorage
from cachet._core.models import CacheEntry, Request, Response
from cachet._exceptions import StorageError, TransportError

logger = logging.getLogger("cachet.integrations.clients")

RequestSender = Callable[[Request], Response]
CacheConfig = Union[CacheOptions, CacheDisabled, bool, Mapping[str, Any], None]


class SyncCacheProxy:
    """
    A proxy for HTTP caching in clients.

    This class is independent of any specific HTTP library and works only with internal models.
    It delegates request execution to a user-provided callable, making it compatible with any
    HTTP client.

    Args:
        request_sender: Callable that sends HTTP requests and returns responses.
        storage: Storage backend for cache entries. Defaults to InMemoryStorage.
        options: Cache configuration, either `CacheOptions`, `CacheDisabled`,
            a bool or a mapping of option names. Defaults to CacheOptions().
        transport_errors: Exceptions raised by `request_sender` when no response
            was received. Only these can be answered with a stale response.
    """

    def __init__(
        self,
        request_sender: RequestSender,
        storage: Optional[BaseStorage] = None,
        options: CacheConfig = None,
        transport_errors: Tuple[Type[BaseException], ...] = (TransportError, OSError),
    ) -> None:
        self.send_request = request_sender
        self._storage = storage if storage is not None else InMemoryStorage()
        self.options = resolve_cache_options(options)
        self.transport_errors = transport_errors

    @property
    def storage(self) -> BaseStorage:
        return self._storage

    @storage.setter
    def storage(self, storage: BaseStorage) -> None:
        self._storage = storage

    def configure(self, options: CacheConfig) -> None:
        self.options = resolve_cache_options(options)

    def handle_request(self, request: Request) -> Response:
        response, _ = self.lookup_or_execute(request)
        return response

    def lookup_or_execute(
        self, request: Request, send: Optional[RequestSender] = None
    ) -> Tuple[Response, Optional[CacheStatus]]:
        """
        Answer `request` from the cache or through `send`.

        Returns the response together with its cache status, which is None
        when the request did not take part in caching.
        """
        send = send if send is not None else self.send_request

        if isinstance(self.options, CacheDisabled) or request.metadata.get("cache_disabled"):
            logger.debug("Caching is disabled for the request")
            return send(request), None

        state: AnyState = IdleClient(options=self.options)

        while state:
            logger.debug(f"Handling state: {state.__class__.__name__}")
            if isinstance(state, IdleClient):
                state = state.next(request)
            elif isinstance(state, Lookup):
                state = state.next(self._storage.get(state.key))
            elif isinstance(state, Bypass):
                if state.key is None:
                    return send(state.request), None
                state = self._send(state, send)
            elif isinstance(state, (CacheMiss, NeedRevalidation)):
                state = self._send(state, send)
            elif isinstance(state, ServeStaleAndRefresh):
                self._refresh(state.refresh(), send)
                state = state.next()
            elif isinstance(state, StoreAndUse):
                self._store(state.key, state.entry, state.retention)
                return state.response, CacheStatus.MISS
            elif isinstance(state, CouldNotBeStored):
                if state.invalidate:
                    self._storage.delete(state.key)
                return state.response, CacheStatus.MISS
            elif isinstance(state, Revalidated):
                self._store(state.key, state.entry, state.retention)
                return state.response, CacheStatus.HIT
            elif isinstance(state, (FromCache, FromStale)):
                return state.response, CacheStatus.HIT
            else:
                assert_never(state)

        raise RuntimeError("Unreachable")

    def clear(self) -> None:
        self._storage.clear()

    def prune(self) -> int:
        return self._storage.prune()

    def delete(self, request: Request) -> bool:
        """Remove the stored response for `request`, return whether there was one."""
        options = self.options if isinstance(self.options, CacheOptions) else CacheOptions()
        return self._storage.delete(IdleClient(options=options).cache_key(request))

    def _send(
        self, state: Union[Bypass, CacheMiss, NeedRevalidation], send: RequestSender
    ) -> Union[StoreAndUse, CouldNotBeStored, Revalidated, FromStale]:
        try:
            response = send(state.request)
        except self.transport_errors as exc:
            fallback = state.fallback()
            if fallback is None:
                raise
            logger.warning(f"Serving a stale response because the request failed: {exc!r}")
            return fallback
        return state.next(response)

    def _refresh(self, state: Union[NeedRevalidation, CacheMiss], send: RequestSender) -> None:
        try:
            response = send(state.request)
        except self.transport_errors as exc:
            logger.warning(f"Could not refresh a stale response: {exc!r}")
            return

        next_state = state.next(response)
        if isinstance(next_state, (StoreAndUse, Revalidated)):
            self._store(next_state.key, next_state.entry, next_state.retention)
        else:
            next_state.response.read()
            if next_state.invalidate:
                self._storage.delete(next_state.key)

    def _store(self, key: str, entry: CacheEntry, retention: Optional[float]) -> None:
        try:
            self._storage.set(key, entry, ttl=retention)
        except StorageError as exc:
            logger.warning(f"Could not store the response: {exc}")
