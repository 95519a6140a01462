from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

from swcache.models.cache import RequestKey, normalize_url


class ResourceRequest(BaseModel):
    """An outbound resource request intercepted on behalf of a client."""

    model_config = ConfigDict(frozen=True)

    url: str  # Absolute
    method: str = "GET"
    destination: str = ""  # "document", "script", "style", "image", "manifest", ...
    mode: str = "cors"  # "navigate" | "same-origin" | "cors" | "no-cors"
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""  # Only non-GET requests carry one; never part of the key

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()

    @property
    def key(self) -> RequestKey:
        return RequestKey(self.method, normalize_url(self.url))

    @property
    def is_navigation(self) -> bool:
        return self.mode == "navigate" or self.destination == "document"
