__all__ = ("CacheError", "StorageError", "TransportError")


class CacheError(Exception): ...


class StorageError(CacheError):
    """Raised by a storage backend when an entry could not be persisted."""


class TransportError(CacheError):
    """
    Raised by request senders to signal that no response was received at all.

    Ordinary non-2xx responses are not transport errors.
    """
