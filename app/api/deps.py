from fastapi import Request

from app.services.chat_router import ChatRouter
from app.services.stream_service import StreamService


def get_stream_service(request: Request) -> StreamService:
    return request.app.state.stream_service


def get_chat_router(request: Request) -> ChatRouter:
    return request.app.state.chat_router
