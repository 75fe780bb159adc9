"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 实时投递组件初始化 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from parley.core.config import (
    get_db_path,
    get_field_key,
    get_field_key_path,
    get_outbox_maxsize,
    get_session_ttl_s,
)
from parley.core.exceptions import ChatError, ValidationError
from parley.core.store import StoreGroup, create_store_group
from parley.core.store.codec import load_or_create_key
from starlette.responses import JSONResponse

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import chat, health, sessions, users, ws
from .services.delivery_channel import DeliveryChannel
from .services.dispatcher import EventDispatcher
from .services.presence import PresenceRegistry
from .services.session_gate import SessionGate
from .services.status_sync import StatusSynchronizer

log = structlog.get_logger()


def init_app_state(app: FastAPI, store_group: StoreGroup) -> None:
    """挂载 StoreGroup 与进程级实时组件（显式注入，不使用全局变量）"""
    app.state.store_group = store_group
    delivery_channel = DeliveryChannel()
    presence = PresenceRegistry()
    synchronizer = StatusSynchronizer(store_group, delivery_channel)
    app.state.delivery_channel = delivery_channel
    app.state.presence = presence
    app.state.synchronizer = synchronizer
    app.state.session_gate = SessionGate(store_group)
    app.state.dispatcher = EventDispatcher(synchronizer, presence, delivery_channel)
    app.state.outbox_maxsize = get_outbox_maxsize()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 和投递组件，关闭时清理连接"""
    # 启动：初始化 Store
    field_key = load_or_create_key(get_field_key(), get_field_key_path())
    store_group = await create_store_group(
        get_db_path(), field_key, get_session_ttl_s()
    )
    init_app_state(app, store_group)
    log.info("gateway_started", db_path=get_db_path())

    yield

    # 关闭：清理数据库连接
    if hasattr(app.state, "store_group") and app.state.store_group:
        await app.state.store_group.conn.close()


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """ChatError -> {"error": {"code", "message"}}"""
    error: dict = {"code": exc.code, "message": exc.message}
    if isinstance(exc, ValidationError) and exc.field:
        error["field"] = exc.field
    if exc.status_code >= 500:
        log.error("request_failed", code=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": error})


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """请求体校验失败同样映射为 400 VALIDATION_ERROR"""
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(p) for p in first.get("loc", ()) if p != "body"]
    error = ValidationError(first.get("msg", "invalid request"), field=".".join(loc) or None)
    return await chat_error_handler(request, error)


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Parley Gateway",
        version="0.1.0",
        description="Parley 双人实时聊天 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # 注册路由
    app.include_router(users.router, tags=["users"])
    app.include_router(sessions.router, tags=["sessions"])
    app.include_router(chat.router, tags=["chat"])
    app.include_router(ws.router, tags=["ws"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
