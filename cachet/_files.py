from __future__ import annotations

import os
import tempfile
import typing as tp


class BaseFileManager:
    def write_to(self, path: str, data: bytes) -> None:
        raise NotImplementedError()

    def read_from(self, path: str) -> bytes:
        raise NotImplementedError()


class FileManager(BaseFileManager):
    """
    Reads and writes whole binary files.

    Writes land in a temporary file next to the target and are moved into place
    with `os.replace`, so a reader sees either the previous file or the new one.
    """

    def write_to(self, path: str, data: bytes) -> None:
        directory = os.path.dirname(path) or "."
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def read_from(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return tp.cast(bytes, f.read())
