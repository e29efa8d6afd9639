from __future__ import annotations

import hashlib
import logging
import os
import typing as tp
from pathlib import Path

from ..._exceptions import StorageError
from ..._files import FileManager
from ..._utils import ensure_cache_dict
from ..models import CacheEntry
from ._base import BaseStorage
from ._packing import StoredRecord, pack, unpack

logger = logging.getLogger("cachet.storages")


class FileStorage(BaseStorage):
    """
    A durable storage keeping one file per key.

    File names are the sha256 hex digest of the key. Every write replaces the
    whole file, and a file that cannot be read or decoded counts as a miss and
    is removed.

    :param base_path: A storage base path where the records should be saved, defaults to `.cache/cachet`
    :type base_path: tp.Optional[tp.Union[str, Path]], optional
    :param ttl: Default retention in seconds for stored records, defaults to None
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    """

    def __init__(
        self,
        base_path: tp.Optional[tp.Union[str, Path]] = None,
        ttl: tp.Optional[tp.Union[int, float]] = None,
    ) -> None:
        super().__init__(ttl)
        self._base_path = ensure_cache_dict(Path(base_path) if base_path is not None else None)
        self._file_manager = FileManager()

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _path_for(self, key: str) -> Path:
        return self._base_path / hashlib.sha256(key.encode("utf-8")).hexdigest()

    def _record_paths(self) -> tp.Iterator[Path]:
        with os.scandir(self._base_path) as entries:
            for entry in entries:
                if entry.name.startswith(".") or not entry.is_file():
                    continue
                yield Path(entry.path)

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning(f"Could not remove cache file {path}: {exc}")
            return False
        return True

    def _read(self, path: Path) -> tp.Optional[StoredRecord]:
        try:
            data = self._file_manager.read_from(str(path))
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning(f"Could not read cache file {path}: {exc}")
            return None

        record = unpack(data)
        if record is None:
            logger.warning(f"Removing corrupted cache file {path}")
            self._remove(path)
        return record

    def get(self, key: str) -> tp.Optional[CacheEntry]:
        path = self._path_for(key)
        record = self._read(path)
        if record is None:
            return None

        entry, stored_until = record
        if self.is_past_deadline(stored_until):
            logger.debug(f"Dropping expired record {key}")
            self._remove(path)
            return None
        return entry

    def set(self, key: str, entry: CacheEntry, ttl: tp.Optional[tp.Union[int, float]] = None) -> None:
        path = self._path_for(key)
        try:
            self._file_manager.write_to(str(path), pack(entry, self.stored_until(entry, ttl)))
        except OSError as exc:
            raise StorageError(f"Could not write cache file {path}") from exc

    def delete(self, key: str) -> bool:
        return self._remove(self._path_for(key))

    def clear(self) -> None:
        for path in list(self._record_paths()):
            self._remove(path)

    def prune(self) -> int:
        removed = 0
        for path in list(self._record_paths()):
            try:
                data = self._file_manager.read_from(str(path))
            except OSError:
                continue

            record = unpack(data)
            if record is None or self.is_past_deadline(record[1]):
                removed += self._remove(path)
        return removed

    def count(self) -> int:
        return sum(1 for _ in self._record_paths())

    def stats(self) -> tp.Dict[str, tp.Any]:
        return {**super().stats(), "base_path": str(self._base_path)}
