from cachet._core._headers import (
    CacheControl as CacheControl,
    Headers as Headers,
    build_cache_control as build_cache_control,
    parse_cache_control as parse_cache_control,
)
from cachet._core._keygen import CacheKeyGenerator as CacheKeyGenerator
from cachet._core._spec import (
    AnyState as AnyState,
    Bypass as Bypass,
    CacheDisabled as CacheDisabled,
    CacheMiss as CacheMiss,
    CacheOptions as CacheOptions,
    CacheStatus as CacheStatus,
    CouldNotBeStored as CouldNotBeStored,
    DirectivePolicy as DirectivePolicy,
    FromCache as FromCache,
    FromStale as FromStale,
    IdleClient as IdleClient,
    Lookup as Lookup,
    NeedRevalidation as NeedRevalidation,
    Revalidated as Revalidated,
    ServeStaleAndRefresh as ServeStaleAndRefresh,
    State as State,
    StoreAndUse as StoreAndUse,
    resolve_cache_options as resolve_cache_options,
)
from cachet._core._storages import (
    BaseStorage as BaseStorage,
    FileStorage as FileStorage,
    InMemoryStorage as InMemoryStorage,
)
from cachet._core.models import (
    CacheEntry as CacheEntry,
    Request as Request,
    RequestMetadata as RequestMetadata,
    Response as Response,
    ResponseMetadata as ResponseMetadata,
)
