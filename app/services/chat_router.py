"""
app.services.chat_router
~~~~~~~~~~~~~~~~~~~~~~~~

弹幕路由 —— 校验、清洗观众弹幕，记入当前场次，再交给 ``ConnectionHub`` 广播。

处理流程:
  1. 解析作者：显式昵称 > 连接当前昵称 > ``Anonymous``
  2. 清洗文本：去首尾空白 → 为空则拒绝 → 截断 → 转义 HTML 敏感字符
  3. 追加到当前场次（``SessionRegistry.append_message``），文本日志异步落盘
  4. 组装 ``chat`` 信封并广播

校验失败在任何状态变更之前直接返回，不会留下半截更新。
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from app.core.background import BackgroundTasks
from app.core.config import settings
from app.core.errors import ErrorKind, Result
from app.core.logging import get_logger
from app.db.stream_log import StreamLogSink
from app.schemas.envelopes import ChatEnvelope, ChatEvent, IdentifyEvent, InboundEvent, encode
from app.schemas.stream import ChatMessage
from app.services.connection import DEFAULT_LABEL, ConnectionHub
from app.services.session_registry import SessionRegistry

logger = get_logger(__name__)

_ESCAPES: dict[str, str] = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
# 已经是转义结果的实体不再二次转义，保证 sanitize 幂等
_BARE_AMPERSAND = re.compile(r"&(?!(?:amp|lt|gt|quot|#x27|#x2F);)")


def sanitize(text: str) -> str:
    """转义 ``& < > " ' /``，防止文本被任何渲染端当作标记解析。

    对已转义的文本再次调用结果不变。
    """
    escaped = _BARE_AMPERSAND.sub("&amp;", text)
    for char, entity in _ESCAPES.items():
        escaped = escaped.replace(char, entity)
    return escaped


def normalize_text(raw_text: str | None, max_length: int) -> Result[str]:
    """去空白、拒绝空文本、截断到 ``max_length`` 个字符，再转义。"""
    text = (raw_text or "").strip()
    if not text:
        return Result.failure(ErrorKind.VALIDATION, "Message text must not be empty")
    return Result.success(sanitize(text[:max_length]))


class ChatRouter:
    """弹幕路由器。

    Attributes:
        registry: 场次注册表。
        hub: 连接中心。
        log_sink: 可选的文本日志（为 None 时不落盘）。
        max_length: 弹幕最大字符数（转义前）。
        author_max_length: 昵称最大字符数（转义前）。
        requires_live: 未开播时是否拒绝弹幕。
    """

    def __init__(
        self,
        registry: SessionRegistry,
        hub: ConnectionHub,
        log_sink: StreamLogSink | None = None,
        max_length: int | None = None,
        author_max_length: int | None = None,
        requires_live: bool | None = None,
    ) -> None:
        self.registry = registry
        self.hub = hub
        self.log_sink = log_sink
        self.max_length = max_length or settings.CHAT_MAX_LENGTH
        self.author_max_length = author_max_length or settings.AUTHOR_MAX_LENGTH
        self.requires_live = settings.CHAT_REQUIRES_LIVE if requires_live is None else requires_live
        self._background = BackgroundTasks("chat-log")

    # ── 入站事件 ──────────────────────────────────────────────────────

    async def dispatch(self, connection_id: str, event: InboundEvent) -> Result[Any]:
        """按信封类型分发一条已解码的入站事件。"""
        if isinstance(event, ChatEvent):
            return await self.handle_chat_event(connection_id, event.author, event.text)
        if isinstance(event, IdentifyEvent):
            return self.handle_identify(connection_id, event.username)
        # ping 只用于保活，不需要应答
        return Result.success()

    async def handle_chat_event(
        self,
        connection_id: str | None,
        raw_author: str | None,
        raw_text: str | None,
    ) -> Result[ChatMessage]:
        """处理一条弹幕。``connection_id`` 为 None 表示来自 HTTP 后备通道。"""
        normalized = normalize_text(raw_text, self.max_length)
        if not normalized.ok:
            return Result(error=normalized.error)

        explicit_author = (raw_author or "").strip()
        if explicit_author:
            author = sanitize(explicit_author[: self.author_max_length])
        else:
            label = self.hub.label_of(connection_id) if connection_id else None
            author = label or DEFAULT_LABEL

        message = ChatMessage(
            author=author,
            text=normalized.value,
            timestamp=datetime.now(timezone.utc),
        )

        recorded = self.registry.append_message(message)
        if not recorded.ok:
            if self.requires_live:
                return Result(error=recorded.error)
            logger.debug("未开播，弹幕仅广播不计入场次 | author=%s", author)

        if connection_id and explicit_author and explicit_author != DEFAULT_LABEL:
            self.hub.relabel(connection_id, author)

        self._log_in_background(message)

        envelope = ChatEnvelope(
            author=message.author,
            text=message.text,
            timestamp=message.timestamp.isoformat(),
        )
        delivery = await self.hub.broadcast(encode(envelope))
        logger.debug(
            "弹幕已广播 | author=%s | sent=%d | failed=%d",
            author, delivery.sent, delivery.failed,
        )
        return Result.success(message)

    def handle_identify(self, connection_id: str, raw_username: str | None) -> Result[str]:
        """处理 ``identify`` 事件：更新连接昵称。"""
        username = (raw_username or "").strip()
        if not username:
            return Result.failure(ErrorKind.VALIDATION, "Username must not be empty")
        label = sanitize(username[: self.author_max_length])
        if not self.hub.relabel(connection_id, label):
            return Result.failure(ErrorKind.NOT_FOUND, f"Unknown connection {connection_id}")
        logger.info("观众更新昵称 | conn=%s | name=%s", connection_id, label)
        return Result.success(label)

    # ── 文本日志（后台） ──────────────────────────────────────────────

    def _log_in_background(self, message: ChatMessage) -> None:
        if self.log_sink is None:
            return
        self._background.spawn(
            self.log_sink.append(message.author, message.text, message.timestamp),
        )

    async def drain(self) -> None:
        """等待所有未完成的日志写入（关闭或测试时调用）。"""
        await self._background.drain()
