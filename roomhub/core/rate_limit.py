"""
roomhub.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~

API 与 WebSocket 的限流配置。
"""
import time
from typing import Dict

from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- WebSocket 限流器 ---------
class WebSocketRateLimiter:
    """基于内存的 WebSocket 消息限流器。

    记录每条连接上一次消息的时间，两条消息间隔小于 ``interval_seconds`` 时拒绝。
    """

    def __init__(self, interval_seconds: float = 0.2):
        self.interval_seconds = interval_seconds
        self._last_message_time: Dict[str, float] = {}

    def is_allowed(self, client_id: str) -> bool:
        """检查客户端是否允许发送消息。

        Args:
            client_id: 客户端唯一标识（连接 ID）。

        Returns:
            是否允许发送。如果允许，则同时更新上次发送时间。
        """
        now = time.monotonic()
        last_time = self._last_message_time.get(client_id)

        if last_time is None or now - last_time >= self.interval_seconds:
            self._last_message_time[client_id] = now
            return True
        return False

    def remove_client(self, client_id: str) -> None:
        """清理断开连接的客户端记录。"""
        self._last_message_time.pop(client_id, None)
