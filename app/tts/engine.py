"""
app.tts.engine
~~~~~~~~~~~~~~

基于 Edge-TTS 的语音合成引擎。

把开播播报文本异步合成为 MP3 字节，供 ``TTSNotifier`` 写入播报目录。
语音模型默认读取配置中心 ``settings.TTS_VOICE``。
"""
from __future__ import annotations

import edge_tts

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


async def generate_audio_bytes(text: str, voice: str | None = None) -> bytes:
    """将文本转换为 MP3 音频字节。

    使用 Edge-TTS 异步流式获取音频块，拼接到内存缓冲区。

    Args:
        text: 待合成的文本内容。
        voice: 语音模型，默认 ``settings.TTS_VOICE``。

    Returns:
        MP3 音频字节。合成失败时返回空字节串。
    """
    try:
        communicate = edge_tts.Communicate(text, voice or settings.TTS_VOICE)

        audio_data = bytearray()
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio_data.extend(chunk["data"])
        return bytes(audio_data)
    except Exception as e:
        logger.error("TTS 合成失败: %s", e, exc_info=True)
        return b""
