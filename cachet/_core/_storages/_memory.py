from __future__ import annotations

import logging
import typing as tp
from collections import OrderedDict

from ..models import CacheEntry
from ._base import BaseStorage

logger = logging.getLogger("cachet.storages")


class InMemoryStorage(BaseStorage):
    """
    A bounded in-memory storage.

    When full, admitting a new key evicts the record that was inserted first.
    Reads do not reorder records, and overwriting a key counts as a fresh insertion.

    :param capacity: The maximum number of records that can be stored, defaults to 1000
    :type capacity: int, optional
    :param ttl: Default retention in seconds for stored records, defaults to None
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    """

    def __init__(self, capacity: int = 1000, ttl: tp.Optional[tp.Union[int, float]] = None) -> None:
        super().__init__(ttl)

        if capacity <= 0:
            raise ValueError("Capacity must be positive")

        self.capacity = capacity
        self._records: OrderedDict[str, tp.Tuple[CacheEntry, tp.Optional[float]]] = OrderedDict()

    def get(self, key: str) -> tp.Optional[CacheEntry]:
        record = self._records.get(key)
        if record is None:
            return None

        entry, stored_until = record
        if self.is_past_deadline(stored_until):
            logger.debug(f"Dropping expired record {key}")
            del self._records[key]
            return None

        return entry.copy()

    def set(self, key: str, entry: CacheEntry, ttl: tp.Optional[tp.Union[int, float]] = None) -> None:
        if key in self._records:
            del self._records[key]
        elif len(self._records) >= self.capacity:
            evicted, _ = self._records.popitem(last=False)
            logger.debug(f"Evicting record {evicted}")

        self._records[key] = (entry.copy(), self.stored_until(entry, ttl))

    def delete(self, key: str) -> bool:
        return self._records.pop(key, None) is not None

    def clear(self) -> None:
        self._records.clear()

    def prune(self) -> int:
        expired = [key for key, (_, stored_until) in self._records.items() if self.is_past_deadline(stored_until)]
        for key in expired:
            del self._records[key]
        return len(expired)

    def count(self) -> int:
        return len(self._records)

    def stats(self) -> tp.Dict[str, tp.Any]:
        return {**super().stats(), "capacity": self.capacity}
