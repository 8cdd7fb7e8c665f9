"""
app.schemas.envelopes
~~~~~~~~~~~~~~~~~~~~~

WebSocket 消息信封（封闭的带标签变体集合）。

入站消息在边界处只解码一次，之后各组件只处理强类型对象:
  - ``{"type": "chat", "author"?, "text"?}``
  - ``{"type": "ping"}``
  - ``{"type": "identify", "username"?}``

出站消息:
  - ``chat`` / ``stream_status`` / ``viewers`` / ``system`` / ``error``
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.core.errors import ErrorKind, Result


def utc_now_iso() -> str:
    """当前 UTC 时间的 ISO 字符串。"""
    return datetime.now(timezone.utc).isoformat()


# ── 入站 ──────────────────────────────────────────────────────────────

class ChatEvent(BaseModel):
    type: Literal["chat"]
    author: str | None = None
    text: str | None = None


class PingEvent(BaseModel):
    type: Literal["ping"]


class IdentifyEvent(BaseModel):
    type: Literal["identify"]
    username: str | None = None


InboundEvent = Annotated[
    Union[ChatEvent, PingEvent, IdentifyEvent],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def decode_inbound(raw: str) -> Result[InboundEvent]:
    """把客户端发来的 JSON 文本解码为入站事件。

    非法 JSON、未知 ``type`` 或字段类型错误都返回 ``VALIDATION`` 失败。
    """
    try:
        return Result.success(_inbound_adapter.validate_json(raw))
    except ValidationError as e:
        return Result.failure(
            ErrorKind.VALIDATION,
            f"Malformed message: {e.error_count()} validation error(s)",
        )


# ── 出站 ──────────────────────────────────────────────────────────────

class ChatEnvelope(BaseModel):
    type: Literal["chat"] = "chat"
    author: str
    text: str
    timestamp: str


class StreamStatusEnvelope(BaseModel):
    type: Literal["stream_status"] = "stream_status"
    event: Literal["started", "ended"]
    data: str
    timestamp: str = Field(default_factory=utc_now_iso)


class ViewersEnvelope(BaseModel):
    type: Literal["viewers"] = "viewers"
    count: int = Field(..., ge=0)


class SystemEnvelope(BaseModel):
    type: Literal["system"] = "system"
    data: str
    timestamp: str = Field(default_factory=utc_now_iso)


class ErrorEnvelope(BaseModel):
    type: Literal["error"] = "error"
    message: str
    timestamp: str = Field(default_factory=utc_now_iso)


OutboundEnvelope = Union[
    ChatEnvelope, StreamStatusEnvelope, ViewersEnvelope, SystemEnvelope, ErrorEnvelope,
]


def encode(envelope: OutboundEnvelope) -> str:
    """序列化出站信封。同一次广播只序列化一次，所有连接收到相同字节。"""
    return envelope.model_dump_json()
