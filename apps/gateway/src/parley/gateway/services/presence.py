"""PresenceRegistry -- 进程级在线状态服务

维护 user_id <-> connection_id 的单连接绑定。新连接静默取代旧连接；
旧连接随后断开时不会把仍在线的用户误标为离线。
绑定表的读写在同一把 asyncio.Lock 下完成。
"""

import asyncio

import structlog
from parley.core.models.payloads import PresencePayload

log = structlog.get_logger()


class PresenceRegistry:
    """在线状态注册表（在 lifespan 中创建并注入，不使用全局变量）"""

    def __init__(self) -> None:
        self._bindings: dict[str, str] = {}
        self._owners: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def mark_online(self, user_id: str, connection_id: str) -> PresencePayload:
        """绑定用户到连接，返回需广播的在线事件"""
        async with self._lock:
            previous = self._bindings.get(user_id)
            if previous is not None and previous != connection_id:
                self._owners.pop(previous, None)
                log.info(
                    "presence_superseded",
                    user_id=user_id,
                    previous_connection_id=previous,
                    connection_id=connection_id,
                )
            self._bindings[user_id] = connection_id
            self._owners[connection_id] = user_id
        return PresencePayload(user_id=user_id, online=True)

    async def mark_offline(self, connection_id: str) -> PresencePayload | None:
        """解除连接绑定

        Returns:
            需广播的离线事件；连接未绑定或已被取代时返回 None
        """
        async with self._lock:
            user_id = self._owners.pop(connection_id, None)
            if user_id is None:
                return None
            if self._bindings.get(user_id) != connection_id:
                return None
            del self._bindings[user_id]
        return PresencePayload(user_id=user_id, online=False)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._bindings

    def connection_for(self, user_id: str) -> str | None:
        return self._bindings.get(user_id)

    def online_users(self) -> set[str]:
        return set(self._bindings)
