"""
app.services.stream_service
~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播业务服务 —— 驱动开播 / 下播，并负责由此产生的副作用。

- ``start()``  → 检查媒体服务器 → ``SessionRegistry.start`` → 广播开播 → 后台发送开播通知
- ``stop()``   → ``SessionRegistry.stop`` → 后台写场次摘要 → 广播下播
- ``on_viewers_changed()`` → 采样在线人数并广播

在 FastAPI lifespan 中创建，挂载于 ``app.state.stream_service``。
"""
from __future__ import annotations

from app.core.background import BackgroundTasks
from app.core.config import settings
from app.core.errors import ErrorKind, Result
from app.core.logging import get_logger
from app.db.stream_log import StreamLogSink
from app.schemas.stream import ActiveStreamData, ChatMessage, HealthData, SessionSnapshot
from app.services.chat_router import sanitize
from app.services.connection import ConnectionHub
from app.services.media_server import MediaServerClient
from app.services.notification import NotificationDispatcher, build_gateways
from app.services.session_registry import SessionRegistry
from app.services.status_broadcaster import StatusBroadcaster

logger = get_logger(__name__)


class StreamService:
    """直播业务服务。

    Attributes:
        registry: 场次注册表。
        hub: 连接中心。
        status: 状态广播器。
        media: 媒体服务器客户端。
        log_sink: 可选的文本日志。
        dispatcher: 开播通知分发器。
        require_media_server: 媒体服务器不可用时是否拒绝开播。
    """

    def __init__(
        self,
        registry: SessionRegistry,
        hub: ConnectionHub,
        status: StatusBroadcaster,
        media: MediaServerClient,
        log_sink: StreamLogSink | None = None,
        dispatcher: NotificationDispatcher | None = None,
        require_media_server: bool | None = None,
    ) -> None:
        self.registry = registry
        self.hub = hub
        self.status = status
        self.media = media
        self.log_sink = log_sink
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.require_media_server = (
            settings.REQUIRE_MEDIA_SERVER if require_media_server is None else require_media_server
        )
        self._background = BackgroundTasks("stream-side-effects")

    # ── 开播 / 下播 ───────────────────────────────────────────────────

    async def start(
        self,
        username: str | None,
        notify: bool = False,
        phone: str | None = None,
    ) -> Result[SessionSnapshot]:
        """开播。

        Args:
            username: 主播用户名（必填）。
            notify: 是否发送开播通知。
            phone: 短信通知的接收号码。
        """
        name = (username or "").strip()
        if not name:
            return Result.failure(ErrorKind.VALIDATION, "Username is required")
        name = sanitize(name)

        if self.require_media_server and not await self.media.is_healthy():
            logger.warning("媒体服务器不可用，拒绝开播 | owner=%s", name)
            return Result.failure(
                ErrorKind.EXTERNAL_UNAVAILABLE,
                "Media server unavailable. Start the media server first.",
            )

        result = self.registry.start(
            name,
            ingest_url=self.media.rtmp_ingest_url(),
            playback_url=self.media.hls_url(),
        )
        if not result.ok:
            return result

        # 开播前已在线的观众也计入峰值
        self.registry.record_viewer_sample(self.hub.online_count)
        await self.status.announce_started(name)
        if notify:
            self._background.spawn(self._send_notifications(result.value, phone))
        return result

    async def stop(self) -> Result[SessionSnapshot]:
        """下播。没有直播时返回 ``NOT_FOUND``。"""
        result = self.registry.stop()
        if not result.ok:
            return result

        snapshot = result.value
        if self.log_sink is not None:
            self._background.spawn(self.log_sink.append_session_summary(snapshot))
        await self.status.announce_ended(snapshot)
        return result

    async def _send_notifications(self, snapshot: SessionSnapshot, phone: str | None) -> int:
        """发送开播通知，返回成功的渠道数。"""
        message = f"{snapshot.owner_username} is now live! Watch at {snapshot.playback_url}"
        results = await self.dispatcher.dispatch(build_gateways(phone=phone), message)
        delivered = 0
        for result in results:
            if result.ok:
                delivered += 1
                self.registry.record_notification(snapshot.session_id)
        logger.info("开播通知完成 | session=%s | 成功 %d/%d", snapshot.session_id, delivered, len(results))
        return delivered

    # ── 在线人数 ──────────────────────────────────────────────────────

    async def on_viewers_changed(self) -> int:
        """观众进出后调用：记录峰值采样并广播当前在线人数。"""
        count = self.hub.online_count
        self.registry.record_viewer_sample(count)
        await self.status.announce_viewer_count(count)
        return count

    def schedule_viewers_changed(self) -> None:
        """在后台执行 ``on_viewers_changed``。

        观众断开时连接任务可能已被取消，广播必须交给独立任务完成。
        """
        self._background.spawn(self.on_viewers_changed())

    # ── 查询 ──────────────────────────────────────────────────────────

    def active(self) -> Result[ActiveStreamData]:
        snapshot = self.registry.active()
        if snapshot is None:
            return Result.failure(ErrorKind.NOT_FOUND, "No active stream")
        return Result.success(ActiveStreamData(session=snapshot, viewers=self.hub.online_count))

    def history(self) -> list[ChatMessage]:
        """当前直播（没有则上一场）的弹幕记录。"""
        return list(self.registry.messages())

    async def health(self) -> HealthData:
        return HealthData(
            media_server=await self.media.is_healthy(),
            active_session=self.registry.is_live,
            websocket_connections=self.hub.online_count,
        )

    async def drain(self) -> None:
        """等待后台副作用完成（关闭或测试时调用）。"""
        await self._background.drain()
