"""
app.services.status_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播状态广播 —— 开播 / 下播 / 在线人数 / 系统提示。

只由驱动开播下播的 ``StreamService`` 和 WebSocket 端点调用，
``SessionRegistry`` 本身从不做 I/O。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.schemas.envelopes import (
    StreamStatusEnvelope,
    SystemEnvelope,
    ViewersEnvelope,
    encode,
)
from app.schemas.stream import SessionSnapshot
from app.services.connection import BroadcastResult, ConnectionHub

logger = get_logger(__name__)


class StatusBroadcaster:
    """把生命周期事件封装为信封并广播。"""

    def __init__(self, hub: ConnectionHub) -> None:
        self.hub = hub

    async def announce_started(self, username: str) -> BroadcastResult:
        result = await self.hub.broadcast(
            encode(StreamStatusEnvelope(event="started", data=username)),
        )
        logger.info("已广播开播通知 | owner=%s | sent=%d", username, result.sent)
        return result

    async def announce_ended(self, summary: SessionSnapshot) -> BroadcastResult:
        """广播下播事件，``data`` 为本场时长。"""
        result = await self.hub.broadcast(
            encode(StreamStatusEnvelope(event="ended", data=summary.duration)),
        )
        logger.info("已广播下播通知 | owner=%s | sent=%d", summary.owner_username, result.sent)
        return result

    async def announce_viewer_count(self, count: int) -> BroadcastResult:
        return await self.hub.broadcast(encode(ViewersEnvelope(count=count)))

    async def announce_system(self, text: str) -> BroadcastResult:
        return await self.hub.broadcast(encode(SystemEnvelope(data=text)))
