"""
app.services.session
~~~~~~~~~~~~~~~~~~~~

直播场次领域模型 —— 一次直播的生命周期、弹幕记录与统计计数。

``Session`` 本身不加锁，所有写操作都由 ``SessionRegistry`` 在其锁内调用，
保证同一时刻只有一个写者。读取弹幕记录通过 ``MessageLogView``，
它只暴露创建视图那一刻已经存在的条目，无需整体拷贝。
"""
from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import overload

from app.schemas.stream import ChatMessage, SessionSnapshot, SessionState


def format_duration(seconds: float) -> str:
    """把秒数格式化为 ``{h}h {m}m {s}s``。"""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


class MessageLogView(Sequence[ChatMessage]):
    """只追加弹幕列表的只读视图。

    列表只会在尾部追加，所以前 ``length`` 条永远不会再变化，
    视图可以直接引用底层列表而不用拷贝。
    """

    def __init__(self, items: list[ChatMessage], length: int) -> None:
        self._items = items
        self._length = length

    def __len__(self) -> int:
        return self._length

    @overload
    def __getitem__(self, index: int) -> ChatMessage: ...

    @overload
    def __getitem__(self, index: slice) -> list[ChatMessage]: ...

    def __getitem__(self, index: int | slice) -> ChatMessage | list[ChatMessage]:
        if isinstance(index, slice):
            return [self._items[i] for i in range(*index.indices(self._length))]
        if index < 0:
            index += self._length
        if not 0 <= index < self._length:
            raise IndexError("message index out of range")
        return self._items[index]


class Session:
    """一次直播场次。

    Attributes:
        id: 场次唯一标识，每次开播都会生成新值。
        owner_username: 主播用户名。
        state: 当前状态。
        started_at: 开播时间。
        ended_at: 下播时间，直播中为 ``None``。
        total_messages: 本场弹幕总数（单调递增）。
        peak_viewer_count: 峰值在线人数（单调不减）。
        notifications_sent: 已成功发送的开播通知数。
    """

    def __init__(
        self,
        owner_username: str,
        ingest_url: str | None = None,
        playback_url: str | None = None,
    ) -> None:
        self.id: str = str(uuid.uuid4())
        self.owner_username = owner_username
        self.ingest_url = ingest_url
        self.playback_url = playback_url
        self.state: SessionState = SessionState.IDLE
        self.started_at: datetime | None = None
        self.ended_at: datetime | None = None
        self.total_messages: int = 0
        self.peak_viewer_count: int = 0
        self.notifications_sent: int = 0
        self._messages: list[ChatMessage] = []

    # ── 生命周期 ──────────────────────────────────────────────────────

    def go_live(self, now: datetime | None = None) -> None:
        """Idle → Live。"""
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"场次 {self.id} 状态为 {self.state.value}，无法开播")
        self.started_at = now or datetime.now(timezone.utc)
        self.state = SessionState.LIVE

    def end(self, now: datetime | None = None) -> None:
        """Live → Ended。"""
        if self.state is not SessionState.LIVE:
            raise RuntimeError(f"场次 {self.id} 状态为 {self.state.value}，无法下播")
        self.ended_at = now or datetime.now(timezone.utc)
        self.state = SessionState.ENDED

    @property
    def is_live(self) -> bool:
        return self.state is SessionState.LIVE

    # ── 弹幕与统计 ────────────────────────────────────────────────────

    def append(self, message: ChatMessage) -> int:
        """追加一条弹幕，返回新的弹幕总数。"""
        self._messages.append(message)
        self.total_messages += 1
        return self.total_messages

    def record_viewer_sample(self, count: int) -> int:
        """记录一次在线人数采样，返回当前峰值。"""
        if count > self.peak_viewer_count:
            self.peak_viewer_count = count
        return self.peak_viewer_count

    def record_notification(self) -> int:
        self.notifications_sent += 1
        return self.notifications_sent

    @property
    def messages(self) -> MessageLogView:
        """当前弹幕记录的只读视图。"""
        return MessageLogView(self._messages, len(self._messages))

    # ── 快照 ──────────────────────────────────────────────────────────

    def duration_seconds(self, now: datetime | None = None) -> float:
        if self.started_at is None:
            return 0.0
        end = self.ended_at or now or datetime.now(timezone.utc)
        return max((end - self.started_at).total_seconds(), 0.0)

    def snapshot(self, now: datetime | None = None) -> SessionSnapshot:
        """生成当前时刻的不可变快照。"""
        seconds = self.duration_seconds(now)
        return SessionSnapshot(
            session_id=self.id,
            owner_username=self.owner_username,
            state=self.state,
            started_at=self.started_at or datetime.now(timezone.utc),
            ended_at=self.ended_at,
            duration_seconds=seconds,
            duration=format_duration(seconds),
            total_messages=self.total_messages,
            peak_viewer_count=self.peak_viewer_count,
            notifications_sent=self.notifications_sent,
            ingest_url=self.ingest_url,
            playback_url=self.playback_url,
        )

    def __repr__(self) -> str:
        return (
            f"Session(id={self.id!r}, owner={self.owner_username!r}, "
            f"state={self.state.value}, messages={self.total_messages})"
        )
