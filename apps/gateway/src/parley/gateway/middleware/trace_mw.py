"""TraceMiddleware

为会话相关请求绑定 peer_id 与 trace_id，贯穿该请求的全部日志。
peer_id 从 /api/chat/{peer_id} 路径中提取。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ULID 长度
_ID_LENGTH = 26


class TraceMiddleware(BaseHTTPMiddleware):
    """会话级追踪中间件 -- 为聊天操作绑定 peer_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        parts = request.url.path.strip("/").split("/")
        # /api/chat/{peer_id}
        if len(parts) >= 3 and parts[0] == "api" and parts[1] == "chat":
            peer_id = parts[2]
            if len(peer_id) == _ID_LENGTH:
                structlog.contextvars.bind_contextvars(
                    peer_id=peer_id,
                    trace_id=f"trace-{peer_id}",
                )

        return await call_next(request)
