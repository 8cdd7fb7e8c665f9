"""
app.core.errors
~~~~~~~~~~~~~~~

错误分类与显式结果类型。

核心操作对"预期内"的失败（已在直播、没有直播、弹幕为空……）
一律返回 ``Result.failure(...)``，不通过抛异常跳转控制流。
只有单个连接的发送失败使用 ``TransportError``，且只在 ``ConnectionHub`` 内部捕获。
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """核心层的错误种类。"""

    STATE_CONFLICT = "state_conflict"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    EXTERNAL_UNAVAILABLE = "external_unavailable"

    @property
    def http_status(self) -> int:
        """映射到对客户端可见的 HTTP 状态码。"""
        return _HTTP_STATUS[self]


_HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.STATE_CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.EXTERNAL_UNAVAILABLE: 503,
}


@dataclass(frozen=True)
class StreamError:
    """一次失败的种类与可读说明。"""

    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class Result(Generic[T]):
    """成功值或 ``StreamError`` 二选一。

    用法与 ``ApiResponse.ok / fail`` 一致::

        result = registry.start("alice")
        if not result.ok:
            return ApiResponse.fail(msg=result.error.message, code=result.error.kind.http_status)
    """

    value: T | None = None
    error: StreamError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        """快捷构造成功结果。"""
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> Result[T]:
        """快捷构造失败结果。"""
        return cls(error=StreamError(kind=kind, message=message))


class TransportError(Exception):
    """向单个连接发送数据失败（已断开、超时等）。"""

    def __init__(self, connection_id: str, reason: str) -> None:
        super().__init__(f"发送到连接 {connection_id} 失败: {reason}")
        self.connection_id = connection_id
        self.reason = reason
