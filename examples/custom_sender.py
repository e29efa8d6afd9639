#!/usr/bin/env uv run
# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "cachet",
# ]
#
# [tool.uv.sources]
# cachet = { path = "../", editable = true }
# ///

"""Caching in front of any callable that turns a Request into a Response."""

import time

from cachet import FileStorage, Headers, Request, Response, SyncCacheProxy


def origin(request: Request) -> Response:
    print(f"origin called for {request.method} {request.url}")
    return Response(
        status_code=200,
        headers=Headers({"Cache-Control": "max-age=2", "ETag": '"v1"'}),
        stream=iter([f"generated at {time.time():.0f}".encode()]),
    )


proxy = SyncCacheProxy(origin, storage=FileStorage())

for _ in range(3):
    response, status = proxy.lookup_or_execute(Request(method="GET", url="https://example.com/report"))
    print(status, response.read())
    time.sleep(1.5)
