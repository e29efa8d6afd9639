from __future__ import annotations

import abc
import time
import typing as tp

from ..models import CacheEntry


class BaseStorage(abc.ABC):
    """
    Key to entry map with a retention deadline per record.

    The deadline of a record is `entry.created_at + ttl`, where `ttl` is the value
    passed to `set` or, when omitted, the storage-wide `ttl`. A record without
    a deadline is kept until it is evicted, deleted or cleared.

    :param ttl: Default retention in seconds for stored records, defaults to None
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    """

    def __init__(self, ttl: tp.Optional[tp.Union[int, float]] = None) -> None:
        self._ttl = ttl

    @abc.abstractmethod
    def get(self, key: str) -> tp.Optional[CacheEntry]:
        raise NotImplementedError()

    @abc.abstractmethod
    def set(self, key: str, entry: CacheEntry, ttl: tp.Optional[tp.Union[int, float]] = None) -> None:
        raise NotImplementedError()

    @abc.abstractmethod
    def delete(self, key: str) -> bool:
        raise NotImplementedError()

    @abc.abstractmethod
    def clear(self) -> None:
        raise NotImplementedError()

    @abc.abstractmethod
    def prune(self) -> int:
        """Remove records past their deadline and return how many were removed."""
        raise NotImplementedError()

    @abc.abstractmethod
    def count(self) -> int:
        raise NotImplementedError()

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def stats(self) -> tp.Dict[str, tp.Any]:
        return {"items": self.count(), "ttl": self._ttl}

    def close(self) -> None:
        pass

    def stored_until(self, entry: CacheEntry, ttl: tp.Optional[tp.Union[int, float]] = None) -> tp.Optional[float]:
        """Deadline of a record about to be written."""
        retention = ttl if ttl is not None else self._ttl
        if retention is None:
            return None
        return entry.created_at + retention

    def is_past_deadline(self, stored_until: tp.Optional[float], now: tp.Optional[float] = None) -> bool:
        if stored_until is None:
            return False
        now = time.time() if now is None else now
        return now > stored_until
