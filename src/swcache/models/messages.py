"""Control channel wire models.

Client → worker messages are discriminated on ``type``. ``CLEAR_CACHE`` is
split into two variants depending on whether a ``url`` is present, so the
dispatcher never has to inspect optional fields.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter


class SkipWaiting(BaseModel):
    type: Literal["SKIP_WAITING"] = "SKIP_WAITING"


class ClearCache(BaseModel):
    type: Literal["CLEAR_CACHE"] = "CLEAR_CACHE"


class ClearCacheUrl(BaseModel):
    type: Literal["CLEAR_CACHE"] = "CLEAR_CACHE"
    url: str


class GetVersion(BaseModel):
    type: Literal["GET_VERSION"] = "GET_VERSION"


def _message_tag(value: Any) -> str | None:
    if isinstance(value, dict):
        tag = value.get("type")
        if tag == "CLEAR_CACHE" and value.get("url") is not None:
            return "CLEAR_CACHE_URL"
        return tag if isinstance(tag, str) else None
    if isinstance(value, ClearCacheUrl):
        return "CLEAR_CACHE_URL"
    return getattr(value, "type", None)


ControlMessage = Annotated[
    Annotated[SkipWaiting, Tag("SKIP_WAITING")]
    | Annotated[ClearCache, Tag("CLEAR_CACHE")]
    | Annotated[ClearCacheUrl, Tag("CLEAR_CACHE_URL")]
    | Annotated[GetVersion, Tag("GET_VERSION")],
    Discriminator(_message_tag),
]

control_message_adapter: TypeAdapter[ControlMessage] = TypeAdapter(ControlMessage)


class CacheCleared(BaseModel):
    type: Literal["CACHE_CLEARED"] = "CACHE_CLEARED"
    success: bool


class VersionInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["VERSION"] = "VERSION"
    version: str
    generation_id: str = Field(alias="cacheName")


ControlReply = CacheCleared | VersionInfo


def reply_payload(reply: ControlReply) -> dict:
    """Serialise a reply into the JSON shape clients expect."""
    return reply.model_dump(mode="json", by_alias=True)
