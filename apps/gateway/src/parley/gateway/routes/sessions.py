"""会话路由

DELETE /api/sessions/current: 注销当前会话（token 立即失效，清除 Cookie，
并以 4401 关闭用该会话建立的 WebSocket 连接）。
"""

import structlog
from fastapi import APIRouter, Depends
from parley.core.config import SESSION_COOKIE_NAME
from parley.core.models import Identity
from parley.core.store.session_store import hash_token
from starlette.responses import Response

from ..deps import (
    get_current_identity,
    get_delivery_channel,
    get_request_token,
    get_store_group,
)

log = structlog.get_logger()

router = APIRouter()


@router.delete("/api/sessions/current", status_code=204)
async def logout(
    identity: Identity = Depends(get_current_identity),
    token: str | None = Depends(get_request_token),
    store_group=Depends(get_store_group),
    channel=Depends(get_delivery_channel),
):
    """注销：撤销会话记录并断开该会话的实时连接，返回 204"""
    await store_group.session_store.revoke(token or "")
    closed = channel.close_session(hash_token(token or ""))
    log.info("session_revoked", user_id=identity.user_id, closed_connections=closed)

    response = Response(status_code=204)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response
