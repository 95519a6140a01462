from __future__ import annotations

from swcache.models.cache import (
    CacheEntry,
    Generation,
    RequestKey,
    ResponseSnapshot,
    normalize_url,
)
from swcache.models.messages import (
    CacheCleared,
    ClearCache,
    ClearCacheUrl,
    ControlMessage,
    ControlReply,
    GetVersion,
    SkipWaiting,
    VersionInfo,
)
from swcache.models.request import ResourceRequest

__all__ = [
    # cache
    "CacheEntry",
    "Generation",
    "RequestKey",
    "ResponseSnapshot",
    "normalize_url",
    # requests
    "ResourceRequest",
    # control channel
    "SkipWaiting",
    "ClearCache",
    "ClearCacheUrl",
    "GetVersion",
    "ControlMessage",
    "CacheCleared",
    "VersionInfo",
    "ControlReply",
]
