from __future__ import annotations

from datetime import datetime
from typing import Literal, NamedTuple
from urllib.parse import urldefrag

from pydantic import BaseModel, ConfigDict

ResponseType = Literal["basic", "cors", "opaque", "error"]


def normalize_url(url: str) -> str:
    """Drop the fragment; it never reaches the network and never splits entries."""
    return urldefrag(url).url


class RequestKey(NamedTuple):
    """Identity of a cache entry within a generation."""

    method: str
    url: str


class ResponseSnapshot(BaseModel):
    """Immutable byte-exact capture of a response at fetch or store time."""

    model_config = ConfigDict(frozen=True)

    status: int
    status_text: str = ""
    headers: tuple[tuple[str, str], ...] = ()  # In wire order, duplicates kept
    body: bytes = b""
    type: ResponseType = "basic"
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def clone(self) -> ResponseSnapshot:
        """Return an independent copy safe to hand to a second consumer."""
        return self.model_copy(deep=True)


class Generation(BaseModel):
    """A named namespace of cached entries representing one deployment."""

    id: str
    created_at: datetime


class CacheEntry(BaseModel):
    """Single stored response inside a generation."""

    key: RequestKey
    payload: ResponseSnapshot
    stored_at: datetime
