"""
roomhub.main
~~~~~~~~~~~~

FastAPI 应用入口：注册路由、挂载中间件、定义生命周期。

在线状态相关的共享结构（``ConnectionRegistry`` / ``PresenceIndex``）
在 lifespan 启动时创建并挂载到 ``app.state``，关闭时释放。
"""
from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from roomhub.api import presence_ws, rooms
from roomhub.core.config import settings
from roomhub.core.exceptions import PersistenceError, RoomNotFound, ValidationError
from roomhub.core.logging import get_logger, request_id_ctx_var, setup_logging
from roomhub.core.rate_limit import limiter
from roomhub.db import close_mongo, connect_mongo, get_database
from roomhub.db.room_repository import RoomRepository
from roomhub.schemas.api_response import ApiResponse
from roomhub.services.connection_registry import ConnectionRegistry
from roomhub.services.presence_index import PresenceIndex
from roomhub.services.presence_reconciler import PresenceReconciler
from roomhub.services.room_directory import RoomDirectoryService

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    await connect_mongo()

    index = PresenceIndex()
    registry = ConnectionRegistry(index)
    app.state.presence_index = index
    app.state.connection_registry = registry
    app.state.room_directory = RoomDirectoryService(
        repo=RoomRepository(get_database()),
        reconciler=PresenceReconciler(index),
    )
    logger.info(
        "应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    index.close()
    await close_mongo()
    logger.info("应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="协作房间成员关系与在线状态 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

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


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """为每个 HTTP 请求设置 request_id（优先沿用上游的 ``X-Request-ID``）。"""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
    token = request_id_ctx_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
app.include_router(presence_ws.router, tags=["Presence"])


# ── 异常处理器 ────────────────────────────────────────────────────────

def _fail(status_code: int, msg: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse.fail(msg=msg, code=status_code).model_dump(),
    )


@app.exception_handler(RoomNotFound)
async def room_not_found_handler(request: Request, exc: RoomNotFound) -> JSONResponse:
    return _fail(404, "Room not found")


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _fail(422, str(exc))


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("持久化失败: %s %s -> %s", request.method, request.url, exc)
    return _fail(500, str(exc) if not settings.is_prod else "服务器内部错误")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    return _fail(500, str(exc) if not settings.is_prod else "服务器内部错误")


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行，并汇报在线状态索引的概况。"""
    registry: ConnectionRegistry | None = getattr(request.app.state, "connection_registry", None)
    presence = None
    if registry is not None:
        presence = {
            "status": "closed" if registry.index.closed else "ok",
            "connections": len(registry),
            "active_rooms": len(registry.index.active_room_ids()),
        }
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
            "presence": presence,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "roomhub.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
