"""
app.core.config
~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")

NotifyChannel = Literal["sms", "tts"]


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="MetaStream Live Backend", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 媒体服务器 ────────────────────────────────────────────────────
    MEDIA_SERVER_URL: str = Field(
        default="http://localhost:8000",
        description="转码媒体服务器（HLS 输出）的基础地址",
    )
    MEDIA_HEALTH_TIMEOUT: float = Field(
        default=3.0,
        description="媒体服务器健康检查超时（秒）",
    )
    REQUIRE_MEDIA_SERVER: bool = Field(
        default=True,
        description="媒体服务器不可用时是否拒绝开播",
    )
    RTMP_INGEST_URL: str = Field(
        default="rtmp://localhost/live/stream",
        description="推流端（OBS）使用的 RTMP 地址",
    )
    STREAM_KEY: str = Field(default="stream", description="固定推流密钥")

    # ── 聊天 ──────────────────────────────────────────────────────────
    CHAT_MAX_LENGTH: int = Field(default=500, description="单条弹幕最大字符数（转义前）")
    AUTHOR_MAX_LENGTH: int = Field(default=64, description="昵称最大字符数（转义前）")
    CHAT_REQUIRES_LIVE: bool = Field(
        default=False,
        description="为 True 时未开播拒绝弹幕；为 False 时照常广播但不计入场次",
    )
    WS_SEND_TIMEOUT: float = Field(
        default=5.0,
        description="单个连接单次发送的超时（秒），超时视为连接失效",
    )

    # ── 日志落盘 ──────────────────────────────────────────────────────
    STREAM_LOG_FILE: str = Field(
        default="stream_log.txt",
        description="弹幕与场次摘要的文本日志文件",
    )
    STREAM_LOG_TIMEOUT: float = Field(
        default=2.0,
        description="单次日志写入的超时（秒），超时只记录告警",
    )

    # ── 开播通知 ──────────────────────────────────────────────────────
    NOTIFY_TIMEOUT: float = Field(default=3.0, description="单个通知渠道的超时（秒）")
    NOTIFY_CHANNELS: list[NotifyChannel] = Field(
        default_factory=lambda: ["sms", "tts"],
        description="开播时启用的通知渠道",
    )
    SMS_GATEWAY_URL: str = Field(
        default="",
        description="短信网关地址，留空则仅打印模拟短信",
    )
    SMS_API_KEY: str = Field(default="", description="短信网关 API Key")
    TTS_VOICE: str = Field(
        default="en-US-AriaNeural",
        description="Edge-TTS 语音模型",
    )
    TTS_OUTPUT_DIR: str = Field(
        default="announcements",
        description="开播语音播报 MP3 的输出目录",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8080, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
