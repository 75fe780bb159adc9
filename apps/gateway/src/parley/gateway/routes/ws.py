"""WebSocket 实时通道

GET /ws?token=...: 实时事件连接。

1. accept 之前解析会话，未登录以 4401 关闭
2. 每条连接一个 writer 协程，顺序写出发送队列中的事件
3. reader 循环读取 JSON 帧并交给 EventDispatcher，回复同样经由发送队列写出，
   保证与房间推送的相对顺序
4. 断开时统一走 dispatcher.disconnect（离线广播 + 退出全部房间）
5. 服务端摘除连接时由 writer 主动关闭：积压 1013，会话注销 4401
"""

import asyncio
import contextlib
import json
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from parley.core.exceptions import Unauthenticated
from parley.core.models import ServerEventType
from parley.core.store.session_store import hash_token

from ..services.delivery_channel import Connection
from ..services.dispatcher import DispatchResult
from ..services.session_gate import extract_token

log = structlog.get_logger()

router = APIRouter()

# 自定义关闭码：会话无效
WS_CLOSE_UNAUTHENTICATED = 4401
# 发送队列积压，连接被摘除
WS_CLOSE_TRY_AGAIN_LATER = 1013
# writer 收尾等待时间
_WRITER_DRAIN_TIMEOUT_S = 5.0

# 服务端主动摘除连接时的关闭码
_SERVER_CLOSE_CODES: dict[str, int] = {
    "dropped": WS_CLOSE_TRY_AGAIN_LATER,
    "revoked": WS_CLOSE_UNAUTHENTICATED,
}


def _close_code(result: DispatchResult) -> int:
    for reply in result.replies:
        if (
            reply.event == ServerEventType.ERROR
            and reply.data.get("code") == Unauthenticated.code
        ):
            return WS_CLOSE_UNAUTHENTICATED
    return 1000


def _decode_frame(message: dict) -> Any:
    """将文本或二进制帧解析为 JSON，无法解析时返回 None"""
    raw = message.get("text")
    if raw is None:
        try:
            raw = (message.get("bytes") or b"").decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket):
    """实时事件端点"""
    state = websocket.app.state
    token = extract_token(websocket.headers, websocket.cookies, websocket.query_params)
    try:
        identity = await state.session_gate.current_identity(token)
    except Unauthenticated as e:
        log.info("ws_rejected", reason=e.message)
        await websocket.close(code=WS_CLOSE_UNAUTHENTICATED)
        return

    connection = Connection(
        identity.user_id,
        outbox_maxsize=state.outbox_maxsize,
        session_key=hash_token(token or ""),
    )
    state.delivery_channel.register(connection)
    await websocket.accept()

    structlog.contextvars.bind_contextvars(
        connection_id=connection.connection_id,
        user_id=identity.user_id,
    )
    log.info("ws_connected")

    reader_done = asyncio.Event()

    async def pump_outbox() -> None:
        """顺序写出发送队列，遇到哨兵或连接被摘除时结束"""
        try:
            while True:
                event = await connection.outbox.get()
                if event is None:
                    break
                await websocket.send_json(event.to_frame())
                if connection.closed and connection.outbox.empty():
                    break
        except (WebSocketDisconnect, RuntimeError):
            return
        # 被服务端摘除（积压或会话注销）：主动关闭，reader 随后收到断开
        code = _SERVER_CLOSE_CODES.get(connection.close_reason or "")
        if code is not None and not reader_done.is_set():
            log.warning("ws_closed_by_server", reason=connection.close_reason, code=code)
            with contextlib.suppress(RuntimeError):
                await websocket.close(code=code)

    writer = asyncio.create_task(pump_outbox())
    dispatcher = state.dispatcher
    close_code: int | None = 1000

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            if connection.closed:
                # 已被服务端摘除（积压或会话注销），不再处理入站帧
                close_code = _SERVER_CLOSE_CODES.get(connection.close_reason or "", 1000)
                break
            frame = _decode_frame(message)
            result = await dispatcher.dispatch(connection, frame)
            for reply in result.replies:
                connection.offer(reply)
            if result.close:
                close_code = _close_code(result)
                break
    except WebSocketDisconnect:
        close_code = None
    finally:
        reader_done.set()
        await dispatcher.disconnect(connection)
        try:
            await asyncio.wait_for(writer, timeout=_WRITER_DRAIN_TIMEOUT_S)
        except TimeoutError:
            writer.cancel()
        if close_code is not None:
            with contextlib.suppress(RuntimeError):
                await websocket.close(code=close_code)
        log.info("ws_disconnected")
        structlog.contextvars.unbind_contextvars("connection_id", "user_id")
