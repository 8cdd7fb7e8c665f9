"""
app.services.notification
~~~~~~~~~~~~~~~~~~~~~~~~~

开播通知 —— 短信 / 语音播报等渠道的统一抽象。

通知是尽力而为的旁路：每个渠道都有独立超时，任何失败只记日志，
绝不影响开播本身是否成功，也不会拖慢开播响应。
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

import httpx

from app.core.config import settings
from app.core.errors import ErrorKind, Result
from app.core.logging import get_logger
from app.tts.engine import generate_audio_bytes

logger = get_logger(__name__)


class NotificationGateway(ABC):
    """通知渠道基类。"""

    channel: str = "base"

    @abstractmethod
    async def notify(self, message: str) -> Result[None]:
        """发送一条通知。"""


class SMSNotifier(NotificationGateway):
    """短信通知。

    配置了 ``SMS_GATEWAY_URL`` 时通过 HTTP 网关发送，
    否则只在日志中打印模拟短信。
    """

    channel = "sms"

    def __init__(
        self,
        recipient: str,
        gateway_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.recipient = recipient
        self.gateway_url = settings.SMS_GATEWAY_URL if gateway_url is None else gateway_url
        self.api_key = settings.SMS_API_KEY if api_key is None else api_key
        self.timeout = timeout or settings.NOTIFY_TIMEOUT

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers

    async def notify(self, message: str) -> Result[None]:
        if not self.gateway_url:
            logger.info("📱 [SMS 模拟] to=%s | %s", self.recipient, message)
            return Result.success()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.gateway_url,
                    json={"to": self.recipient, "message": message},
                    headers=self._build_headers(),
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            return Result.failure(ErrorKind.EXTERNAL_UNAVAILABLE, f"SMS gateway error: {e}")
        logger.info("📱 短信已发送 | to=%s", self.recipient)
        return Result.success()


class TTSNotifier(NotificationGateway):
    """语音播报：把通知文本合成为 MP3，写入播报目录。"""

    channel = "tts"

    def __init__(self, output_dir: str | Path | None = None, voice: str | None = None) -> None:
        self.output_dir = Path(output_dir or settings.TTS_OUTPUT_DIR)
        self.voice = voice

    def _write(self, audio: bytes) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path = self.output_dir / f"announcement-{stamp}.mp3"
        path.write_bytes(audio)
        return path

    async def notify(self, message: str) -> Result[None]:
        audio = await generate_audio_bytes(message, voice=self.voice)
        if not audio:
            return Result.failure(ErrorKind.EXTERNAL_UNAVAILABLE, "TTS synthesis returned no audio")
        try:
            path = await asyncio.to_thread(self._write, audio)
        except OSError as e:
            return Result.failure(ErrorKind.EXTERNAL_UNAVAILABLE, f"Cannot write announcement: {e}")
        logger.info("🔊 语音播报已生成 | path=%s", path)
        return Result.success()


def build_gateways(
    channels: list[str] | None = None,
    phone: str | None = None,
) -> list[NotificationGateway]:
    """按配置组装本次开播要用的通知渠道。没有手机号时跳过短信。"""
    gateways: list[NotificationGateway] = []
    for channel in channels if channels is not None else settings.NOTIFY_CHANNELS:
        if channel == "sms":
            if phone:
                gateways.append(SMSNotifier(recipient=phone))
            else:
                logger.debug("未提供手机号，跳过短信通知")
        elif channel == "tts":
            gateways.append(TTSNotifier())
        else:
            logger.warning("未知通知渠道: %s", channel)
    return gateways


class NotificationDispatcher:
    """把一条通知并发发往多个渠道，单个渠道超时或失败互不影响。"""

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout or settings.NOTIFY_TIMEOUT

    async def _notify_one(self, gateway: NotificationGateway, message: str) -> Result[None]:
        try:
            result = await asyncio.wait_for(gateway.notify(message), timeout=self.timeout)
        except asyncio.TimeoutError:
            result = Result.failure(
                ErrorKind.EXTERNAL_UNAVAILABLE, f"{gateway.channel} timed out after {self.timeout}s",
            )
        except Exception as e:
            logger.warning("通知渠道异常 | channel=%s | %s", gateway.channel, e, exc_info=True)
            result = Result.failure(ErrorKind.EXTERNAL_UNAVAILABLE, f"{gateway.channel} failed: {e}")

        if not result.ok:
            logger.warning("通知发送失败 | channel=%s | %s", gateway.channel, result.error.message)
        return result

    async def dispatch(
        self, gateways: list[NotificationGateway], message: str,
    ) -> list[Result[None]]:
        """发送并返回每个渠道的结果（顺序与 ``gateways`` 一致）。"""
        if not gateways:
            return []
        return list(await asyncio.gather(*(self._notify_one(g, message) for g in gateways)))
