"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 组装核心组件、注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import stream, ws
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.db.stream_log import StreamLogSink
from app.schemas.api_response import ApiResponse
from app.services.chat_router import ChatRouter
from app.services.connection import ConnectionHub
from app.services.media_server import MediaServerClient
from app.services.session_registry import SessionRegistry
from app.services.status_broadcaster import StatusBroadcaster
from app.services.stream_service import StreamService

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    registry = SessionRegistry()
    hub = ConnectionHub()
    log_sink = StreamLogSink(settings.STREAM_LOG_FILE)
    media = MediaServerClient()

    app.state.stream_service = StreamService(
        registry=registry,
        hub=hub,
        status=StatusBroadcaster(hub),
        media=media,
        log_sink=log_sink,
    )
    app.state.chat_router = ChatRouter(registry=registry, hub=hub, log_sink=log_sink)

    if await media.is_healthy():
        logger.info("✅ 媒体服务器已就绪 | url=%s", media.base_url)
    else:
        logger.warning("⚠️ 未检测到媒体服务器 | url=%s", media.base_url)

    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    # 进程退出前结束直播并写入摘要，避免日志里留下没有结尾的场次
    await app.state.stream_service.stop()
    await app.state.stream_service.drain()
    await app.state.chat_router.drain()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="单直播间实时弹幕后端核心 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(stream.router, prefix="/api", tags=["Stream & Chat"])
app.include_router(ws.router, tags=["WebSocket Live"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/health", tags=["System"])
async def health_check() -> JSONResponse:
    """验证服务进程是否正常运行（不检查媒体服务器）。"""
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
