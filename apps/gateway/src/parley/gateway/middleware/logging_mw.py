"""LoggingMiddleware

为每个 HTTP 请求绑定 request_id（沿用上游合法的 X-Request-ID，否则新生成 ULID），
记录耗时，并在响应头中回传。WebSocket 不经过此中间件，由 ws 路由自行绑定 connection_id。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

REQUEST_ID_HEADER = "X-Request-ID"

# 探活请求不记录完成日志
_QUIET_PATHS = frozenset({"/health"})

log = structlog.get_logger()


def _incoming_request_id(request: Request) -> str | None:
    value = request.headers.get(REQUEST_ID_HEADER, "")
    try:
        return str(ULID.from_str(value))
    except ValueError:
        return None


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = _incoming_request_id(request) or str(ULID())
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        if response.status_code >= 500:
            await log.awarning(
                "request_failed", status_code=response.status_code, duration_ms=duration_ms
            )
        elif path not in _QUIET_PATHS:
            await log.ainfo(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
