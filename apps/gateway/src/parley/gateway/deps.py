"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

所有服务实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request
from parley.core.models import Identity
from parley.core.store import StoreGroup

from .services.delivery_channel import DeliveryChannel
from .services.presence import PresenceRegistry
from .services.session_gate import SessionGate, extract_token
from .services.status_sync import StatusSynchronizer


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_delivery_channel(request: Request) -> DeliveryChannel:
    """从 app.state 获取 DeliveryChannel 实例"""
    return request.app.state.delivery_channel


def get_presence(request: Request) -> PresenceRegistry:
    """从 app.state 获取 PresenceRegistry 实例"""
    return request.app.state.presence


def get_synchronizer(request: Request) -> StatusSynchronizer:
    """从 app.state 获取 StatusSynchronizer 实例"""
    return request.app.state.synchronizer


def get_request_token(request: Request) -> str | None:
    """提取请求携带的会话 token"""
    return extract_token(request.headers, request.cookies)


async def get_current_identity(request: Request) -> Identity:
    """解析当前请求的身份，未登录时抛出 Unauthenticated（映射为 401）"""
    gate: SessionGate = request.app.state.session_gate
    return await gate.current_identity(get_request_token(request))
