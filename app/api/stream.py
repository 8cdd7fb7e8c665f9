"""
app.api.stream
~~~~~~~~~~~~~~

直播 REST 接口 —— 开播 / 下播 / 查询 + HTTP 弹幕后备通道。

端点:
  - ``GET  /api/health``          → 后端与媒体服务器健康状态
  - ``POST /api/stream/start``    → 开播
  - ``GET  /api/stream/active``   → 当前直播详情
  - ``POST /api/stream/stop``     → 下播
  - ``POST /api/chat``            → 发送弹幕（WebSocket 不可用时使用）
  - ``GET  /api/chat/history``    → 当前（或上一场）直播的弹幕记录

失败统一返回 ``ApiResponse.fail``，HTTP 状态码与业务码一致（409 / 404 / 400 / 503）。
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_chat_router, get_stream_service
from app.core.errors import StreamError
from app.schemas.api_response import ApiResponse
from app.schemas.stream import (
    ActiveStreamData,
    ChatMessage,
    ChatRequest,
    HealthData,
    SessionSnapshot,
    StartStreamRequest,
)
from app.services.chat_router import ChatRouter
from app.services.stream_service import StreamService

router: APIRouter = APIRouter()


def _error_response(error: StreamError) -> JSONResponse:
    return JSONResponse(
        status_code=error.kind.http_status,
        content=ApiResponse.from_error(error).model_dump(mode="json"),
    )


@router.get("/health", summary="健康检查", response_model=ApiResponse[HealthData])
async def health(service: StreamService = Depends(get_stream_service)) -> ApiResponse[HealthData]:
    """返回后端、媒体服务器、当前直播和连接数的状态。"""
    return ApiResponse.ok(data=await service.health())


# ── 直播生命周期 ──────────────────────────────────────────────────────

@router.post("/stream/start", summary="开播", response_model=ApiResponse[SessionSnapshot])
async def start_stream(
    body: StartStreamRequest,
    service: StreamService = Depends(get_stream_service),
) -> ApiResponse[SessionSnapshot] | JSONResponse:
    """开始一场新直播。

    已有直播时返回 409；媒体服务器不可用时返回 503；用户名为空时返回 400。
    """
    result = await service.start(body.username, notify=body.notify, phone=body.phone)
    if not result.ok:
        return _error_response(result.error)
    return ApiResponse.ok(data=result.value, msg="Stream started")


@router.get("/stream/active", summary="当前直播", response_model=ApiResponse[ActiveStreamData])
async def active_stream(
    service: StreamService = Depends(get_stream_service),
) -> ApiResponse[ActiveStreamData] | JSONResponse:
    result = service.active()
    if not result.ok:
        return _error_response(result.error)
    return ApiResponse.ok(data=result.value)


@router.post("/stream/stop", summary="下播", response_model=ApiResponse[SessionSnapshot])
async def stop_stream(
    service: StreamService = Depends(get_stream_service),
) -> ApiResponse[SessionSnapshot] | JSONResponse:
    """结束当前直播，返回本场摘要。没有直播时返回 404。"""
    result = await service.stop()
    if not result.ok:
        return _error_response(result.error)
    return ApiResponse.ok(data=result.value, msg="Stream stopped")


# ── 弹幕 ──────────────────────────────────────────────────────────────

@router.post("/chat", summary="发送弹幕", response_model=ApiResponse[ChatMessage])
async def send_chat(
    body: ChatRequest,
    chat_router: ChatRouter = Depends(get_chat_router),
) -> ApiResponse[ChatMessage] | JSONResponse:
    """HTTP 后备通道，与 WebSocket 弹幕走同一条处理链路并广播给所有观众。"""
    result = await chat_router.handle_chat_event(None, body.author, body.text)
    if not result.ok:
        return _error_response(result.error)
    return ApiResponse.ok(data=result.value, msg="Message sent")


@router.get("/chat/history", summary="弹幕记录", response_model=ApiResponse[list[ChatMessage]])
async def chat_history(service: StreamService = Depends(get_stream_service)) -> ApiResponse[list[ChatMessage]]:
    return ApiResponse.ok(data=service.history())
