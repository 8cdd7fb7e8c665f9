"""
app.schemas.stream
~~~~~~~~~~~~~~~~~~

直播场次相关的 Pydantic 模型 —— 值对象、只读快照与 REST 请求/响应体。
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """场次状态，只能 Idle → Live → Ended 单向流转。"""

    IDLE = "idle"
    LIVE = "live"
    ENDED = "ended"


class ChatMessage(BaseModel):
    """一条已接受的弹幕（不可变）。"""

    model_config = ConfigDict(frozen=True)

    author: str = Field(..., description="发送者昵称（已转义）")
    text: str = Field(..., description="弹幕文本（已转义）")
    timestamp: datetime = Field(..., description="路由器接受该弹幕的时间（UTC）")

    def __str__(self) -> str:
        return f"[{self.timestamp.isoformat()}] {self.author}: {self.text}"


class SessionSnapshot(BaseModel):
    """某一时刻的场次只读快照。"""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., description="场次唯一标识")
    owner_username: str = Field(..., description="主播用户名")
    state: SessionState = Field(..., description="场次状态")
    started_at: datetime = Field(..., description="开播时间（UTC）")
    ended_at: datetime | None = Field(default=None, description="下播时间（UTC），直播中为空")
    duration_seconds: float = Field(..., ge=0, description="已直播时长（秒）")
    duration: str = Field(..., description="可读时长，如 ``1h 2m 3s``")
    total_messages: int = Field(..., ge=0, description="本场弹幕总数")
    peak_viewer_count: int = Field(..., ge=0, description="本场峰值在线人数")
    notifications_sent: int = Field(..., ge=0, description="本场已发送的开播通知数")
    ingest_url: str | None = Field(default=None, description="RTMP 推流地址")
    playback_url: str | None = Field(default=None, description="HLS 播放地址")


# ── REST 请求/响应模型 ────────────────────────────────────────────────

class StartStreamRequest(BaseModel):
    """开播请求体。"""

    username: str = Field(default="", description="主播用户名")
    notify: bool = Field(default=False, description="是否发送开播通知（短信 / 语音播报）")
    phone: str | None = Field(default=None, description="接收短信通知的手机号")


class ChatRequest(BaseModel):
    """HTTP 弹幕请求体（WebSocket 不可用时的后备通道）。"""

    author: str | None = Field(default=None, description="发送者昵称")
    text: str | None = Field(default=None, description="弹幕文本")


class ActiveStreamData(BaseModel):
    """当前直播详情。"""

    session: SessionSnapshot = Field(..., description="场次快照")
    viewers: int = Field(..., ge=0, description="当前在线观众数")


class HealthData(BaseModel):
    """后端与媒体服务器的健康状态。"""

    backend: str = Field(default="ok", description="后端自身状态")
    media_server: bool = Field(..., description="媒体服务器是否可用")
    active_session: bool = Field(..., description="当前是否有直播")
    websocket_connections: int = Field(..., ge=0, description="当前 WebSocket 连接数")
