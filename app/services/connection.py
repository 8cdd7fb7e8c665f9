"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接中心 —— 维护在线观众列表与广播能力。

- 增删改连接只在 ``threading.Lock`` 内做字典操作，不做任何网络 I/O；
- ``broadcast()`` 先在锁内拷贝一份连接快照，再在锁外并发发送；
- 单个连接发送失败或超时只影响它自己：记录日志后移出列表并关闭其传输，其余连接照常收到消息。
"""
from __future__ import annotations

import asyncio
import threading
import uuid
from dataclasses import dataclass
from typing import Protocol

from app.core.config import settings
from app.core.errors import TransportError
from app.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LABEL = "Anonymous"
# WebSocket 关闭码 1011：服务端内部错误
CLOSE_CODE_SEND_FAILED = 1011


class Transport(Protocol):
    """连接的底层传输，``fastapi.WebSocket`` 天然满足该协议。"""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass
class Connection:
    """一个在线观众。

    Attributes:
        id: 连接 ID，由 ``ConnectionHub.register`` 分配。
        transport: 底层传输句柄（由网络层持有生命周期）。
        label: 显示昵称，作为弹幕的默认作者。
    """

    id: str
    transport: Transport
    label: str = DEFAULT_LABEL


@dataclass(frozen=True)
class BroadcastResult:
    """一次广播的汇总结果。"""

    sent: int
    failed: int


class ConnectionHub:
    """在线连接注册表 + 广播器。

    Attributes:
        send_timeout: 单个连接单次发送的超时（秒）。
    """

    def __init__(self, send_timeout: float | None = None) -> None:
        self.send_timeout: float = send_timeout if send_timeout is not None else settings.WS_SEND_TIMEOUT
        self._lock = threading.Lock()
        self._connections: dict[str, Connection] = {}

    # ── 注册表 ────────────────────────────────────────────────────────

    def register(self, transport: Transport) -> str:
        """加入在线列表，返回新连接 ID。调用前传输应已由网络层 accept。"""
        connection_id = f"conn-{uuid.uuid4().hex[:8]}"
        with self._lock:
            self._connections[connection_id] = Connection(id=connection_id, transport=transport)
            count = len(self._connections)
        logger.info("观众进入直播间 | conn=%s | 当前在线: %d", connection_id, count)
        return connection_id

    def unregister(self, connection_id: str) -> bool:
        """移出在线列表。重复调用安全，返回本次是否真的移除了连接。"""
        with self._lock:
            removed = self._connections.pop(connection_id, None)
            count = len(self._connections)
        if removed is None:
            return False
        logger.info("观众退出直播间 | conn=%s | 当前在线: %d", connection_id, count)
        return True

    def relabel(self, connection_id: str, name: str) -> bool:
        """更新连接的显示昵称。"""
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return False
            connection.label = name
        return True

    def label_of(self, connection_id: str) -> str | None:
        with self._lock:
            connection = self._connections.get(connection_id)
            return connection.label if connection is not None else None

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._connections

    @property
    def online_count(self) -> int:
        """当前在线观众数。"""
        with self._lock:
            return len(self._connections)

    def _snapshot(self) -> list[Connection]:
        with self._lock:
            return list(self._connections.values())

    # ── 发送 ──────────────────────────────────────────────────────────

    async def _deliver(self, connection: Connection, payload: str) -> None:
        try:
            await asyncio.wait_for(connection.transport.send_text(payload), timeout=self.send_timeout)
        except Exception as e:
            raise TransportError(connection.id, repr(e)) from e

    async def _evict(self, connection: Connection, reason: str) -> None:
        """移出在线列表并关闭底层传输，接收循环随之退出。"""
        logger.warning("发送失败，移除断开的连接 | conn=%s | %s", connection.id, reason)
        self.unregister(connection.id)
        try:
            await asyncio.wait_for(
                connection.transport.close(code=CLOSE_CODE_SEND_FAILED), timeout=self.send_timeout,
            )
        except Exception as e:
            logger.debug("关闭失效连接时出错 | conn=%s | %r", connection.id, e)

    async def broadcast(self, payload: str) -> BroadcastResult:
        """向所有在线观众广播同一份 payload。"""
        targets = self._snapshot()
        if not targets:
            return BroadcastResult(sent=0, failed=0)

        results = await asyncio.gather(
            *(self._deliver(connection, payload) for connection in targets),
            return_exceptions=True,
        )

        failures = [
            (connection, result.reason if isinstance(result, TransportError) else repr(result))
            for connection, result in zip(targets, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            await asyncio.gather(*(self._evict(connection, reason) for connection, reason in failures))
        return BroadcastResult(sent=len(targets) - len(failures), failed=len(failures))

    async def send_to(self, connection_id: str, payload: str) -> bool:
        """只发给某一个连接（例如把校验错误回显给发送者）。"""
        with self._lock:
            connection = self._connections.get(connection_id)
        if connection is None:
            return False
        try:
            await self._deliver(connection, payload)
        except TransportError as e:
            await self._evict(connection, e.reason)
            return False
        return True
