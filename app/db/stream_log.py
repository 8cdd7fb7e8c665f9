"""
app.db.stream_log
~~~~~~~~~~~~~~~~~

直播文本日志 —— 以追加方式把弹幕和场次摘要写入本地文本文件。

写文件放在线程池中执行，不阻塞事件循环；
写入失败只记录日志，不向调用方抛出，弹幕广播和下播流程不受影响。
"""
from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone
from pathlib import Path

from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.stream import SessionSnapshot

logger = get_logger(__name__)


class StreamLogSink:
    """文本日志落盘。

    Attributes:
        path: 日志文件路径。
        timeout: 单次写入的超时（秒）。
    """

    def __init__(self, path: str | Path, timeout: float | None = None) -> None:
        self.path = Path(path)
        self.timeout = timeout or settings.STREAM_LOG_TIMEOUT
        # 多个线程同时追加时，保证每一行完整写入
        self._write_lock = threading.Lock()

    def _write_line(self, line: str) -> None:
        with self._write_lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    async def _append_line(self, line: str) -> bool:
        try:
            await asyncio.wait_for(asyncio.to_thread(self._write_line, line), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("直播日志写入超时 | path=%s | timeout=%.1fs", self.path, self.timeout)
            return False
        except OSError as e:
            logger.warning("直播日志写入失败 | path=%s | %s", self.path, e, exc_info=True)
            return False
        return True

    async def append(self, author: str, text: str, timestamp: datetime | None = None) -> bool:
        """追加一条弹幕记录。返回是否写入成功。"""
        ts = (timestamp or datetime.now(timezone.utc)).isoformat()
        return await self._append_line(f"[{ts}] {author}: {text}")

    async def append_session_summary(self, snapshot: SessionSnapshot) -> bool:
        """追加一条场次摘要。返回是否写入成功。"""
        ended = (snapshot.ended_at or datetime.now(timezone.utc)).isoformat()
        line = (
            f"[{ended}] SESSION {snapshot.session_id} | owner={snapshot.owner_username}"
            f" | started={snapshot.started_at.isoformat()} | duration={snapshot.duration}"
            f" | messages={snapshot.total_messages} | peak_viewers={snapshot.peak_viewer_count}"
            f" | notifications={snapshot.notifications_sent}"
        )
        return await self._append_line(line)
