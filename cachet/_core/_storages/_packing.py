from __future__ import annotations

import typing as tp

import msgpack
from typing_extensions import cast

from ..models import CacheEntry

StoredRecord = tp.Tuple[CacheEntry, tp.Optional[float]]


def pack(entry: CacheEntry, stored_until: tp.Optional[float]) -> bytes:
    return cast(
        bytes,
        msgpack.packb(
            {
                "entry": entry.to_dict(),
                "stored_until": stored_until,
            },
            use_bin_type=True,
        ),
    )


def unpack(value: bytes) -> tp.Optional[StoredRecord]:
    """Decode a stored record, None when the bytes are not a valid record."""
    try:
        data = msgpack.unpackb(value, raw=False)
    except (ValueError, TypeError, msgpack.exceptions.UnpackException):
        return None

    if not isinstance(data, dict):
        return None

    stored_until = data.get("stored_until")
    if stored_until is not None and not isinstance(stored_until, (int, float)):
        return None

    entry = CacheEntry.from_dict(data.get("entry"))
    if entry is None:
        return None
    return entry, stored_until
