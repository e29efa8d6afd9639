try:
    import httpx  # noqa: F401
except ImportError as e:
    raise ImportError(
        "httpx is required to use cachet.httpx module. Please install it, e.g., 'pip install httpx'."
    ) from e


from ._sync_httpx import SyncCacheClient as SyncCacheClient, SyncCacheTransport as SyncCacheTransport

__all__ = (
    "SyncCacheClient",
    "SyncCacheTransport",
)
