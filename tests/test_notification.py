"""
tests.test_notification
~~~~~~~~~~~~~~~~~~~~~~~

开播通知测试：短信 / 语音渠道、分发器的超时与异常隔离。

外部依赖（HTTP 网关、Edge-TTS）全部通过 unittest.mock 替换。
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.errors import ErrorKind, Result
from app.services.notification import (
    NotificationDispatcher,
    NotificationGateway,
    SMSNotifier,
    TTSNotifier,
    build_gateways,
)

GATEWAY_URL = "http://sms.test/send"


class StubGateway(NotificationGateway):
    """可控的通知渠道。"""

    def __init__(self, channel: str, delay: float = 0.0, error: Exception | None = None) -> None:
        self.channel = channel
        self.delay = delay
        self.error = error
        self.messages: list[str] = []

    async def notify(self, message: str) -> Result[None]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.messages.append(message)
        return Result.success()


# ── 短信 ──────────────────────────────────────────────────────────────

class TestSMSNotifier:

    @pytest.mark.asyncio
    async def test_simulated_when_no_gateway(self) -> None:
        notifier = SMSNotifier(recipient="+100", gateway_url="")
        with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock) as mock_post:
            result = await notifier.notify("alice is live")

        assert result.ok
        mock_post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_posts_to_gateway(self) -> None:
        notifier = SMSNotifier(recipient="+100", gateway_url=GATEWAY_URL, api_key="secret", timeout=1.0)
        response = httpx.Response(200, request=httpx.Request("POST", GATEWAY_URL))

        with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock, return_value=response) as mock_post:
            result = await notifier.notify("alice is live")

        assert result.ok
        args, kwargs = mock_post.call_args
        assert args[0] == GATEWAY_URL
        assert kwargs["json"] == {"to": "+100", "message": "alice is live"}
        assert kwargs["headers"] == {"X-Api-Key": "secret"}

    @pytest.mark.asyncio
    async def test_gateway_error_is_external_unavailable(self) -> None:
        notifier = SMSNotifier(recipient="+100", gateway_url=GATEWAY_URL, timeout=1.0)

        with patch.object(
            httpx.AsyncClient, "post", new_callable=AsyncMock,
            side_effect=httpx.ConnectError("refused"),
        ):
            result = await notifier.notify("alice is live")

        assert result.error.kind is ErrorKind.EXTERNAL_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_gateway_http_status_error(self) -> None:
        notifier = SMSNotifier(recipient="+100", gateway_url=GATEWAY_URL, timeout=1.0)
        response = httpx.Response(500, request=httpx.Request("POST", GATEWAY_URL))

        with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock, return_value=response):
            result = await notifier.notify("alice is live")

        assert not result.ok


# ── 语音播报 ──────────────────────────────────────────────────────────

class TestTTSNotifier:

    @pytest.mark.asyncio
    async def test_writes_announcement(self, tmp_path) -> None:
        notifier = TTSNotifier(output_dir=tmp_path / "announcements")

        with patch(
            "app.services.notification.generate_audio_bytes",
            new_callable=AsyncMock, return_value=b"ID3fake",
        ) as mock_tts:
            result = await notifier.notify("alice is live")

        assert result.ok
        mock_tts.assert_awaited_once()
        files = list((tmp_path / "announcements").glob("announcement-*.mp3"))
        assert len(files) == 1
        assert files[0].read_bytes() == b"ID3fake"

    @pytest.mark.asyncio
    async def test_empty_audio_is_failure(self, tmp_path) -> None:
        notifier = TTSNotifier(output_dir=tmp_path)

        with patch(
            "app.services.notification.generate_audio_bytes",
            new_callable=AsyncMock, return_value=b"",
        ):
            result = await notifier.notify("alice is live")

        assert result.error.kind is ErrorKind.EXTERNAL_UNAVAILABLE
        assert list(tmp_path.iterdir()) == []


# ── 渠道组装 ──────────────────────────────────────────────────────────

class TestBuildGateways:

    def test_sms_skipped_without_phone(self) -> None:
        gateways = build_gateways(channels=["sms", "tts"], phone=None)
        assert [g.channel for g in gateways] == ["tts"]

    def test_sms_with_phone(self) -> None:
        gateways = build_gateways(channels=["sms"], phone="+100")

        assert len(gateways) == 1
        assert isinstance(gateways[0], SMSNotifier)
        assert gateways[0].recipient == "+100"

    def test_no_channels(self) -> None:
        assert build_gateways(channels=[], phone="+100") == []


# ── 分发器 ────────────────────────────────────────────────────────────

class TestNotificationDispatcher:

    @pytest.mark.asyncio
    async def test_all_channels_receive_message(self) -> None:
        gateways = [StubGateway("sms"), StubGateway("tts")]

        results = await NotificationDispatcher(timeout=1.0).dispatch(gateways, "hello")

        assert all(r.ok for r in results)
        assert all(g.messages == ["hello"] for g in gateways)

    @pytest.mark.asyncio
    async def test_slow_channel_times_out_alone(self) -> None:
        fast = StubGateway("sms")
        slow = StubGateway("tts", delay=5.0)

        results = await asyncio.wait_for(
            NotificationDispatcher(timeout=0.1).dispatch([fast, slow], "hello"), timeout=2.0,
        )

        assert results[0].ok
        assert results[1].error.kind is ErrorKind.EXTERNAL_UNAVAILABLE
        assert "timed out" in results[1].error.message

    @pytest.mark.asyncio
    async def test_raising_channel_is_isolated(self) -> None:
        broken = StubGateway("sms", error=RuntimeError("boom"))
        healthy = StubGateway("tts")

        results = await NotificationDispatcher(timeout=1.0).dispatch([broken, healthy], "hello")

        assert not results[0].ok
        assert results[1].ok
        assert healthy.messages == ["hello"]

    @pytest.mark.asyncio
    async def test_no_gateways(self) -> None:
        assert await NotificationDispatcher().dispatch([], "hello") == []
