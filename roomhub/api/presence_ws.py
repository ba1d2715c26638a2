"""
roomhub.api.presence_ws
~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 在线状态接口。

客户端连接 ``/ws/presence?user_id=...&name=...&avatar=...`` 后即被登记为一条连接，
之后通过 JSON 消息声明自己所在的房间:

  - ``{"action": "join", "room_id": "..."}``：绑定到房间（自动离开上一个房间）
  - ``{"action": "leave"}``：离开当前房间

服务端回复:

  - ``{"type": "presence", "room_id", "active_user_count", "connected_users"}``
  - ``{"type": "error", "msg"}``

无论正常关闭还是异常断开，连接都会在 ``finally`` 中注销（注销是幂等的）。
"""
from __future__ import annotations

import json
import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from roomhub.core.config import settings
from roomhub.core.logging import get_logger, request_id_ctx_var
from roomhub.core.rate_limit import WebSocketRateLimiter
from roomhub.services.connection_registry import ConnectionRegistry, DisplayMeta

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def _send_presence(websocket: WebSocket, registry: ConnectionRegistry, room_id: str) -> None:
    snapshot = await registry.index.snapshot(room_id)
    await websocket.send_json({
        "type": "presence",
        "room_id": room_id,
        "active_user_count": snapshot.count,
        "connected_users": [u.model_dump() for u in snapshot.preview_users],
    })


async def _send_error(websocket: WebSocket, msg: str) -> None:
    await websocket.send_json({"type": "error", "msg": msg})


async def _handle_message(
    websocket: WebSocket,
    registry: ConnectionRegistry,
    connection_id: str,
    message: Any,
) -> None:
    action = message.get("action") if isinstance(message, dict) else None

    if action == "join":
        room_id = message.get("room_id")
        if not isinstance(room_id, str) or not room_id:
            await _send_error(websocket, "room_id is required")
            return
        await registry.bind_to_room(connection_id, room_id)
        await _send_presence(websocket, registry, room_id)
    elif action == "leave":
        current = registry.get(connection_id)
        await registry.unbind(connection_id)
        if current is not None and current.room_id is not None:
            await _send_presence(websocket, registry, current.room_id)
    else:
        await _send_error(websocket, f"unknown action: {action!r}")


@router.websocket("/ws/presence")
async def presence_endpoint(
    websocket: WebSocket,
    user_id: str,
    name: str,
    avatar: str | None = None,
) -> None:
    """在线状态端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        user_id: 已认证的用户 ID（由上游网关注入）。
        name: 用户显示名称。
        avatar: 用户头像 URL。
    """
    token = request_id_ctx_var.set(f"ws-{uuid.uuid4().hex[:8]}")
    registry: ConnectionRegistry = websocket.app.state.connection_registry
    connection_id = uuid.uuid4().hex
    ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)

    try:
        await websocket.accept()
        await registry.register(connection_id, user_id, DisplayMeta(name=name, avatar=avatar))
        logger.info("连接已建立 | conn=%s | user=%s | 在线连接: %d", connection_id, user_id, len(registry))

        try:
            while True:
                raw: str = await websocket.receive_text()
                if not ws_limiter.is_allowed(connection_id):
                    await _send_error(websocket, "too many messages, slow down")
                    continue
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await _send_error(websocket, "invalid JSON")
                    continue
                await _handle_message(websocket, registry, connection_id, message)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("WebSocket 异常: %s | conn=%s", e, connection_id, exc_info=True)
        finally:
            await registry.deregister(connection_id)
            ws_limiter.remove_client(connection_id)
            logger.info("连接已断开 | conn=%s | 在线连接: %d", connection_id, len(registry))
    finally:
        request_id_ctx_var.reset(token)
