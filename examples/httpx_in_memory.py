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

import logging

from cachet import CacheOptions, InMemoryStorage
from cachet.httpx import SyncCacheClient

logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
logging.getLogger("httpcore").setLevel(logging.WARNING)

cl = SyncCacheClient(
    storage=InMemoryStorage(capacity=100),
    cache_options=CacheOptions(default_ttl=60, stale_if_error=300),
)

cl.get("https://httpbin.org/cache/60")
response = cl.get("https://httpbin.org/cache/60")
print(response.headers["x-cache-status"])
print(response.extensions)
