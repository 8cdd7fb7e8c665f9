"""
tests.test_chat_router
~~~~~~~~~~~~~~~~~~~~~~

ChatRouter 单元测试：文本清洗、作者解析、场次记录与广播。
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.errors import ErrorKind
from app.schemas.envelopes import ChatEvent, IdentifyEvent, PingEvent
from app.services.chat_router import ChatRouter, normalize_text, sanitize
from app.services.connection import DEFAULT_LABEL, ConnectionHub
from app.services.session_registry import SessionRegistry


# ── 文本清洗 ──────────────────────────────────────────────────────────

class TestSanitize:
    """测试 HTML 敏感字符转义。"""

    def test_script_tag_has_no_markup_characters(self) -> None:
        escaped = sanitize("<script>alert(1)</script>")

        for char in "<>\"'/":
            assert char not in escaped
        assert escaped == "&lt;script&gt;alert(1)&lt;&#x2F;script&gt;"

    def test_quotes_and_ampersand(self) -> None:
        assert sanitize("""a & b "c" 'd'""") == "a &amp; b &quot;c&quot; &#x27;d&#x27;"

    @pytest.mark.parametrize(
        "raw",
        ["<script>alert(1)</script>", "Tom & Jerry", "&amp; &lt; already", "a/b\"c'd", "plain"],
    )
    def test_idempotent(self, raw: str) -> None:
        once = sanitize(raw)
        assert sanitize(once) == once

    def test_normalize_rejects_blank(self) -> None:
        for raw in (None, "", "   \n\t"):
            result = normalize_text(raw, 500)
            assert result.error.kind is ErrorKind.VALIDATION

    def test_normalize_trims_and_truncates(self) -> None:
        result = normalize_text("  " + "a" * 600 + "  ", 500)
        assert result.value == "a" * 500


# ── 弹幕处理 ──────────────────────────────────────────────────────────

class TestHandleChatEvent:
    """测试 handle_chat_event 的完整流程。"""

    @pytest.mark.asyncio
    async def test_broadcast_payload_is_escaped(
        self, chat_router: ChatRouter, hub: ConnectionHub, make_transport,
    ) -> None:
        viewer = make_transport()
        sender_id = hub.register(make_transport())
        hub.register(viewer)

        result = await chat_router.handle_chat_event(sender_id, "bob", "<b>hi</b>")

        assert result.ok
        envelope = json.loads(viewer.sent[-1])
        assert envelope["type"] == "chat"
        assert envelope["author"] == "bob"
        assert envelope["text"] == "&lt;b&gt;hi&lt;&#x2F;b&gt;"
        assert "timestamp" in envelope

    @pytest.mark.asyncio
    async def test_empty_text_rejected_without_side_effects(
        self, chat_router: ChatRouter, registry: SessionRegistry, hub: ConnectionHub, make_transport,
    ) -> None:
        registry.start("alice")
        viewer = make_transport()
        sender_id = hub.register(viewer)

        result = await chat_router.handle_chat_event(sender_id, "bob", "   ")

        assert result.error.kind is ErrorKind.VALIDATION
        assert viewer.sent == []
        assert registry.active().total_messages == 0
        assert hub.label_of(sender_id) == DEFAULT_LABEL

    @pytest.mark.asyncio
    async def test_records_into_live_session(
        self, chat_router: ChatRouter, registry: SessionRegistry,
    ) -> None:
        registry.start("alice")

        await chat_router.handle_chat_event(None, "bob", "hello")
        await chat_router.handle_chat_event(None, "carol", "hey")

        assert registry.active().total_messages == 2
        assert [(m.author, m.text) for m in registry.messages()] == [("bob", "hello"), ("carol", "hey")]

    @pytest.mark.asyncio
    async def test_broadcast_without_live_session_when_allowed(
        self, chat_router: ChatRouter, registry: SessionRegistry, hub: ConnectionHub, make_transport,
    ) -> None:
        viewer = make_transport()
        hub.register(viewer)

        result = await chat_router.handle_chat_event(None, "bob", "anyone here?")

        assert result.ok
        assert len(viewer.sent) == 1
        assert len(registry.messages()) == 0

    @pytest.mark.asyncio
    async def test_rejected_without_live_session_when_required(
        self, registry: SessionRegistry, hub: ConnectionHub, make_transport,
    ) -> None:
        router = ChatRouter(registry=registry, hub=hub, requires_live=True)
        viewer = make_transport()
        hub.register(viewer)

        result = await router.handle_chat_event(None, "bob", "anyone here?")

        assert result.error.kind is ErrorKind.NOT_FOUND
        assert viewer.sent == []

    @pytest.mark.asyncio
    async def test_text_truncated_to_max_length(self, chat_router: ChatRouter) -> None:
        result = await chat_router.handle_chat_event(None, "bob", "x" * 501)
        assert len(result.value.text) == 500


class TestAuthorResolution:
    """测试作者解析与连接昵称更新。"""

    @pytest.mark.asyncio
    async def test_explicit_author_relabels_connection(
        self, chat_router: ChatRouter, hub: ConnectionHub, make_transport,
    ) -> None:
        connection_id = hub.register(make_transport())

        await chat_router.handle_chat_event(connection_id, "  bob  ", "hi")
        follow_up = await chat_router.handle_chat_event(connection_id, None, "again")

        assert hub.label_of(connection_id) == "bob"
        assert follow_up.value.author == "bob"

    @pytest.mark.asyncio
    async def test_falls_back_to_anonymous(
        self, chat_router: ChatRouter, hub: ConnectionHub, make_transport,
    ) -> None:
        connection_id = hub.register(make_transport())

        from_connection = await chat_router.handle_chat_event(connection_id, "", "hi")
        from_http = await chat_router.handle_chat_event(None, None, "hi")

        assert from_connection.value.author == DEFAULT_LABEL
        assert from_http.value.author == DEFAULT_LABEL

    @pytest.mark.asyncio
    async def test_author_is_escaped(self, chat_router: ChatRouter) -> None:
        result = await chat_router.handle_chat_event(None, "<i>eve</i>", "hi")
        assert "<" not in result.value.author

    def test_identify_sets_label(self, chat_router: ChatRouter, hub: ConnectionHub, make_transport) -> None:
        connection_id = hub.register(make_transport())

        result = chat_router.handle_identify(connection_id, "dave")

        assert result.value == "dave"
        assert hub.label_of(connection_id) == "dave"

    def test_identify_rejects_blank(self, chat_router: ChatRouter, hub: ConnectionHub, make_transport) -> None:
        connection_id = hub.register(make_transport())
        assert chat_router.handle_identify(connection_id, "  ").error.kind is ErrorKind.VALIDATION


class TestDispatch:
    """测试按信封类型分发。"""

    @pytest.mark.asyncio
    async def test_dispatch_variants(
        self, chat_router: ChatRouter, hub: ConnectionHub, make_transport,
    ) -> None:
        viewer = make_transport()
        connection_id = hub.register(viewer)

        assert (await chat_router.dispatch(connection_id, PingEvent(type="ping"))).ok
        assert viewer.sent == []

        await chat_router.dispatch(connection_id, IdentifyEvent(type="identify", username="erin"))
        chat = await chat_router.dispatch(connection_id, ChatEvent(type="chat", text="yo"))

        assert chat.value.author == "erin"
        assert json.loads(viewer.sent[-1])["author"] == "erin"


class TestLogSink:
    """文本日志是后台副作用，失败不影响弹幕。"""

    @pytest.mark.asyncio
    async def test_log_sink_receives_message(self, registry: SessionRegistry, hub: ConnectionHub) -> None:
        sink = MagicMock()
        sink.append = AsyncMock(return_value=True)
        router = ChatRouter(registry=registry, hub=hub, log_sink=sink, requires_live=False)

        result = await router.handle_chat_event(None, "bob", "hello")
        await router.drain()

        sink.append.assert_awaited_once_with("bob", "hello", result.value.timestamp)

    @pytest.mark.asyncio
    async def test_log_sink_failure_does_not_block_delivery(
        self, registry: SessionRegistry, hub: ConnectionHub, make_transport,
    ) -> None:
        sink = MagicMock()
        sink.append = AsyncMock(side_effect=RuntimeError("disk gone"))
        router = ChatRouter(registry=registry, hub=hub, log_sink=sink, requires_live=False)
        viewer = make_transport()
        hub.register(viewer)

        result = await router.handle_chat_event(None, "bob", "hello")
        await router.drain()

        assert result.ok
        assert len(viewer.sent) == 1
