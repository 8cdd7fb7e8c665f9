"""
app.services.session_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

场次注册表 —— 全系统同一时刻最多只有一个直播中的 ``Session``。

所有读写都在同一把 ``threading.Lock`` 内完成，临界区只做指针交换和计数器更新，
从不包含网络或磁盘 I/O，因此无论调用方是事件循环里的协程还是线程池里的线程都安全。

- ``start()``  → 检查并创建，同一时刻并发调用只有一个成功
- ``stop()``   → 结束当前场次；出现内部异常也会清空槽位，不会留下"幽灵直播"
- ``active()`` → 当前场次的只读快照
"""
from __future__ import annotations

import threading

from app.core.errors import ErrorKind, Result
from app.core.logging import get_logger
from app.schemas.stream import ChatMessage, SessionSnapshot
from app.services.session import MessageLogView, Session

logger = get_logger(__name__)

_NO_ACTIVE_STREAM = "No active stream"


class SessionRegistry:
    """持有至多一个直播中的场次。

    在 lifespan 中创建后通过构造参数注入 ``StreamService`` 和 ``ChatRouter``，不使用模块级全局变量。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: Session | None = None
        self._last: Session | None = None

    # ── 生命周期 ──────────────────────────────────────────────────────

    def start(
        self,
        owner_username: str,
        ingest_url: str | None = None,
        playback_url: str | None = None,
    ) -> Result[SessionSnapshot]:
        """开播。已有直播时返回 ``STATE_CONFLICT``，其中注明当前主播。"""
        with self._lock:
            current = self._current
            if current is not None and current.is_live:
                owner = current.owner_username
                conflict = True
            else:
                session = Session(owner_username, ingest_url=ingest_url, playback_url=playback_url)
                session.go_live()
                self._current = session
                snapshot = session.snapshot()
                conflict = False

        if conflict:
            logger.info("开播被拒绝，已有直播进行中 | owner=%s | requested_by=%s", owner, owner_username)
            return Result.failure(
                ErrorKind.STATE_CONFLICT,
                f"A stream is already active (owner: {owner}). Stop it first.",
            )
        logger.info("🎬 开播 | session=%s | owner=%s", snapshot.session_id, owner_username)
        return Result.success(snapshot)

    def stop(self) -> Result[SessionSnapshot]:
        """下播。没有直播时返回 ``NOT_FOUND``，重复调用不会改变任何状态。

        结束场次的过程中即使抛出意外异常，槽位也会在 ``finally`` 中被清空，
        之后的 ``start()`` 不会被卡住。
        """
        with self._lock:
            session = self._current
            if session is None or not session.is_live:
                return Result.failure(ErrorKind.NOT_FOUND, "No active stream to stop")
            try:
                session.end()
                snapshot = session.snapshot()
                self._last = session
            finally:
                self._current = None

        logger.info(
            "🛑 下播 | session=%s | owner=%s | duration=%s | messages=%d",
            snapshot.session_id, snapshot.owner_username, snapshot.duration, snapshot.total_messages,
        )
        return Result.success(snapshot)

    # ── 查询 ──────────────────────────────────────────────────────────

    def active(self) -> SessionSnapshot | None:
        """当前直播的快照，没有直播时为 ``None``。"""
        with self._lock:
            if self._current is None:
                return None
            return self._current.snapshot()

    def last_ended(self) -> SessionSnapshot | None:
        """上一场已结束直播的快照。"""
        with self._lock:
            if self._last is None:
                return None
            return self._last.snapshot()

    def messages(self) -> MessageLogView:
        """当前直播（没有则上一场）的弹幕只读视图。"""
        with self._lock:
            session = self._current or self._last
            if session is None:
                return MessageLogView([], 0)
            return session.messages

    @property
    def is_live(self) -> bool:
        with self._lock:
            return self._current is not None

    # ── 计数 ──────────────────────────────────────────────────────────

    def append_message(self, message: ChatMessage) -> Result[int]:
        """把弹幕追加到当前直播，返回新的弹幕总数。"""
        with self._lock:
            if self._current is None:
                return Result.failure(ErrorKind.NOT_FOUND, _NO_ACTIVE_STREAM)
            total = self._current.append(message)
        return Result.success(total)

    def record_viewer_sample(self, count: int) -> Result[int]:
        """记录一次在线人数采样，返回当前峰值。"""
        if count < 0:
            return Result.failure(ErrorKind.VALIDATION, "Viewer count must be non-negative")
        with self._lock:
            if self._current is None:
                return Result.failure(ErrorKind.NOT_FOUND, _NO_ACTIVE_STREAM)
            peak = self._current.record_viewer_sample(count)
        return Result.success(peak)

    def record_notification(self, session_id: str) -> Result[int]:
        """为指定场次的通知计数加一。

        通知是异步发出的，期间可能已经下播或换了新场次，
        只有 ``session_id`` 仍是当前直播时才计数。
        """
        with self._lock:
            if self._current is None or self._current.id != session_id:
                return Result.failure(ErrorKind.NOT_FOUND, f"Session {session_id} is not live")
            sent = self._current.record_notification()
        return Result.success(sent)
