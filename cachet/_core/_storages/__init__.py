from ._base import BaseStorage as BaseStorage
from ._file import FileStorage as FileStorage
from ._memory import InMemoryStorage as InMemoryStorage

__all__ = (
    "BaseStorage",
    "FileStorage",
    "InMemoryStorage",
)
