"""
app.api.ws
~~~~~~~~~~

WebSocket 实时交互接口 —— 单直播间模式。

每个连接一个接收循环：收到的 JSON 文本在这里解码为强类型事件，
交给 ``ChatRouter`` 处理；出站消息全部通过 ``ConnectionHub`` 发送。

消息协议（JSON）:
  - 入站: ``chat`` / ``ping`` / ``identify``
  - 出站: ``chat`` / ``stream_status`` / ``viewers`` / ``system`` / ``error``
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.logging import connection_id_ctx_var, get_logger
from app.schemas.envelopes import ErrorEnvelope, SystemEnvelope, decode_inbound, encode
from app.services.chat_router import ChatRouter
from app.services.connection import ConnectionHub
from app.services.stream_service import StreamService

logger = get_logger(__name__)

router: APIRouter = APIRouter()

WELCOME_MESSAGE = "Connected to MetaStream Live"


async def handle_raw_message(
    connection_id: str,
    raw: str,
    chat_router: ChatRouter,
    hub: ConnectionHub,
) -> None:
    """解码并处理一条入站文本；失败原因只回显给发送者。"""
    if not raw.strip():
        return

    decoded = decode_inbound(raw)
    if not decoded.ok:
        error = decoded.error
    else:
        result = await chat_router.dispatch(connection_id, decoded.value)
        error = result.error

    if error is not None:
        logger.debug("入站消息被拒绝 | kind=%s | %s", error.kind.value, error.message)
        await hub.send_to(connection_id, encode(ErrorEnvelope(message=error.message)))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket 直播间端点。

    连接建立后先收到一条 ``system`` 欢迎消息，全体观众收到最新 ``viewers`` 人数。
    """
    service: StreamService = websocket.app.state.stream_service
    chat_router: ChatRouter = websocket.app.state.chat_router
    hub = service.hub

    await websocket.accept()
    connection_id = hub.register(websocket)
    token = connection_id_ctx_var.set(connection_id)

    try:
        await hub.send_to(connection_id, encode(SystemEnvelope(data=WELCOME_MESSAGE)))
        await service.on_viewers_changed()

        while True:
            raw: str = await websocket.receive_text()
            await handle_raw_message(connection_id, raw, chat_router, hub)
            if connection_id not in hub:
                # 发送失败已被连接中心移除并关闭
                break

    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        hub.unregister(connection_id)
        connection_id_ctx_var.reset(token)
        service.schedule_viewers_changed()
