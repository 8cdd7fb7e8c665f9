"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 假的 WebSocket 传输和核心组件实例，
使单元测试无需网络、媒体服务器或真实客户端即可运行。
"""
from __future__ import annotations

import asyncio
import os
import tempfile

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault(
    "STREAM_LOG_FILE", os.path.join(tempfile.gettempdir(), "metastream_test_stream_log.txt"),
)
os.environ.setdefault("NOTIFY_CHANNELS", "[]")

from app.services.chat_router import ChatRouter  # noqa: E402
from app.services.connection import ConnectionHub  # noqa: E402
from app.services.session_registry import SessionRegistry  # noqa: E402
from app.services.status_broadcaster import StatusBroadcaster  # noqa: E402


class FakeTransport:
    """模拟 ``WebSocket`` 的发送与关闭，记录收到的所有文本和关闭码。

    Args:
        fail: 为 True 时每次发送都抛出异常（模拟已断开的连接）。
        delay: 每次发送前等待的秒数（模拟慢客户端）。
    """

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.sent: list[str] = []
        self.close_code: int | None = None

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code


@pytest.fixture()
def make_transport() -> type[FakeTransport]:
    """返回 ``FakeTransport`` 类，测试中按需构造。"""
    return FakeTransport


@pytest.fixture()
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture()
def hub() -> ConnectionHub:
    return ConnectionHub(send_timeout=0.2)


@pytest.fixture()
def status(hub: ConnectionHub) -> StatusBroadcaster:
    return StatusBroadcaster(hub)


@pytest.fixture()
def chat_router(registry: SessionRegistry, hub: ConnectionHub) -> ChatRouter:
    return ChatRouter(registry=registry, hub=hub, requires_live=False)
