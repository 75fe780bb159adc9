"""SessionGate -- 为每个操作解析当前身份

token 来源（按优先级）：Authorization: Bearer <token>、WebSocket 的 token
查询参数、parley_session Cookie。缺失/未知/过期一律抛出 Unauthenticated。
"""

from collections.abc import Mapping

from parley.core.config import SESSION_COOKIE_NAME
from parley.core.exceptions import Unauthenticated
from parley.core.models import Identity
from parley.core.store import StoreGroup


def extract_token(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    query_params: Mapping[str, str] | None = None,
) -> str | None:
    """从请求上下文中提取 bearer token"""
    authorization = headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    if query_params is not None and query_params.get("token"):
        return query_params["token"]
    return cookies.get(SESSION_COOKIE_NAME) or None


class SessionGate:
    """会话身份解析"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    async def current_identity(self, token: str | None) -> Identity:
        """解析 token 对应的身份

        Raises:
            Unauthenticated: token 缺失、未知、已过期，或用户已不存在
        """
        if not token:
            raise Unauthenticated()
        session = await self._stores.session_store.resolve(token)
        if session is None:
            raise Unauthenticated("session is invalid or expired")
        identity = await self._stores.user_store.get_user(session.user_id)
        if identity is None:
            raise Unauthenticated("session user no longer exists")
        return identity
