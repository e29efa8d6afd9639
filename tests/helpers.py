import time
from typing import Dict, Optional

from cachet import CacheEntry, Headers, Request, Response


def make_request(
    method: str = "GET",
    url: str = "https://example.com/resource",
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
    **metadata,
) -> Request:
    return Request(
        method=method,
        url=url,
        headers=Headers(headers or {}),
        stream=iter([body]),
        metadata=metadata,
    )


def make_response(
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"hello",
) -> Response:
    return Response(
        status_code=status_code,
        headers=Headers(headers or {}),
        stream=iter([body]),
    )


def make_entry(
    headers: Optional[Dict[str, str]] = None,
    ttl: Optional[float] = 60,
    created_at: Optional[float] = None,
    body: bytes = b"hello",
    status_code: int = 200,
) -> CacheEntry:
    return CacheEntry.from_response(
        make_response(status_code, headers, body),
        ttl=ttl,
        now=time.time() if created_at is None else created_at,
    )


class FakeOrigin:
    """Request sender replaying canned responses (or raising canned errors) in order."""

    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.requests = []

    def __call__(self, request: Request) -> Response:
        self.requests.append(request)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    @property
    def calls(self) -> int:
        return len(self.requests)
