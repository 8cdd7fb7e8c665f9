"""
app.db
~~~~~~

本地持久化 —— 目前只有直播文本日志。
"""
from app.db.stream_log import StreamLogSink

__all__ = ["StreamLogSink"]
