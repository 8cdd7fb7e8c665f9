"""
app.services.media_server
~~~~~~~~~~~~~~~~~~~~~~~~~

转码媒体服务器客户端 —— 健康检查与推流 / 拉流地址。

媒体服务器对外提供 ``GET /health``，返回 ``{"status": "ok", "streaming": bool}``。
任何网络错误、超时或非预期响应都视为"不可用"，从不向调用方抛出。
"""
from __future__ import annotations

import httpx

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class MediaServerClient:
    """媒体服务器客户端。

    Attributes:
        base_url: 媒体服务器基础地址。
        timeout: 单次健康检查超时（秒）。
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self.base_url = (base_url or settings.MEDIA_SERVER_URL).rstrip("/")
        self.timeout = timeout or settings.MEDIA_HEALTH_TIMEOUT

    async def _fetch_health(self) -> dict | None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{self.base_url}/health")
            if response.status_code != 200:
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("媒体服务器不可达: %s", e)
            return None
        return data if isinstance(data, dict) else None

    async def is_healthy(self) -> bool:
        """媒体服务器是否在线（``status == "ok"``）。"""
        health = await self._fetch_health()
        return health is not None and health.get("status") == "ok"

    async def is_streaming(self) -> bool:
        """推流端是否正在推流。"""
        health = await self._fetch_health()
        return health is not None and bool(health.get("streaming", False))

    def hls_url(self, stream_key: str | None = None) -> str:
        return f"{self.base_url}/live/{stream_key or settings.STREAM_KEY}/index.m3u8"

    @staticmethod
    def rtmp_ingest_url() -> str:
        return settings.RTMP_INGEST_URL
