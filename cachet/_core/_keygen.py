from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Generator, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

__all__ = (
    "CacheKeyGenerator",
    "DEFAULT_VARY_HEADERS",
    "HashKeyGen",
    "KeyGen",
)

DEFAULT_VARY_HEADERS: Tuple[str, ...] = ("Accept", "Accept-Encoding", "Accept-Language")

DEFAULT_PORTS = {"http": 80, "https": 443}


class KeyGen(ABC):
    @abstractmethod
    def decoder(self) -> Generator[None, bytes | None, bytes]: ...


class HashKeyGen(KeyGen):
    def __init__(self, algorithm: str) -> None:
        self.algorithm = algorithm

    def decoder(self) -> Generator[None, bytes | None, bytes]:
        hasher = hashlib.new(self.algorithm)
        while True:
            chunk = yield None
            if chunk is None:
                break
            hasher.update(chunk)

        return hasher.digest()

    def hexdigest(self, chunks: Iterable[bytes]) -> str:
        decoder = self.decoder()
        next(decoder)
        for chunk in chunks:
            decoder.send(chunk)
        try:
            decoder.send(None)
        except StopIteration as exc:
            return bytes(exc.value).hex()
        raise RuntimeError("Hash decoder did not finish")  # pragma: nocover


def normalize_url(url: str) -> str:
    """
    Normalize an absolute URL for keying.

    Scheme and host are lowercased, a default port is dropped and an empty
    path becomes "/". The query string is kept exactly as sent.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()

    if ":" in host:
        host = f"[{host}]"

    try:
        port = parts.port
    except ValueError:
        port = None

    netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"

    if parts.username is not None:
        userinfo = parts.username if parts.password is None else f"{parts.username}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


class CacheKeyGenerator:
    """
    Derives storage keys from the parts of a request that select a response.

    The key is a hash of the uppercased method, the normalized URL and the
    values of the configured vary headers, in the configured order. When a
    body is passed, its hash is folded in as well, which lets unsafe methods
    be cached per payload.

    Example:
    ```python
        keys = CacheKeyGenerator()
        keys.generate("get", "HTTPS://Example.com:443/a?b=1")
        # 'cachet:<64 hex chars>'
        keys.generate_custom("user-profile")
        # 'cachet:custom:user-profile'
    ```
    """

    def __init__(
        self,
        prefix: str = "cachet:",
        vary_headers: Iterable[str] = DEFAULT_VARY_HEADERS,
        algorithm: str = "sha256",
    ) -> None:
        self.prefix = prefix
        self.vary_headers = tuple(vary_headers)
        self.hasher = HashKeyGen(algorithm)

    def generate(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> str:
        lowered = {key.lower(): value for key, value in (headers or {}).items()}

        parts = [method.upper(), normalize_url(url)]
        for name in self.vary_headers:
            parts.append(f"{name.lower()}:{lowered.get(name.lower(), '')}")

        if body is not None:
            parts.append(hashlib.sha256(body).hexdigest())

        return self.prefix + self.hasher.hexdigest([part.encode("utf-8") + b"\n" for part in parts])

    def generate_custom(self, name: str) -> str:
        return f"{self.prefix}custom:{name}"
