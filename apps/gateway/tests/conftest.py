"""apps/gateway 测试配置 -- FastAPI app + httpx AsyncClient + 服务实例 fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from parley.core.models import Identity
from parley.core.store import StoreGroup, create_store_group
from parley.gateway.services.delivery_channel import Connection, DeliveryChannel
from parley.gateway.services.dispatcher import EventDispatcher
from parley.gateway.services.presence import PresenceRegistry
from parley.gateway.services.status_sync import StatusSynchronizer


@pytest.fixture
def gateway_env(tmp_path: Path, field_key: str, monkeypatch: pytest.MonkeyPatch) -> Path:
    """设置测试环境变量，返回临时数据目录"""
    monkeypatch.setenv("PARLEY_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("PARLEY_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("PARLEY_FIELD_KEY", field_key)
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return tmp_path


@pytest_asyncio.fixture
async def store_group(
    gateway_env: Path, field_key: str
) -> AsyncGenerator[StoreGroup, None]:
    group = await create_store_group(str(gateway_env / "sqlite" / "test.db"), field_key)
    yield group
    await group.conn.close()


@pytest_asyncio.fixture
async def alice(store_group: StoreGroup) -> Identity:
    return await store_group.user_store.create_user("alice", "alice@example.com")


@pytest_asyncio.fixture
async def bob(store_group: StoreGroup) -> Identity:
    return await store_group.user_store.create_user("bob", "bob@example.com")


@pytest.fixture
def channel() -> DeliveryChannel:
    return DeliveryChannel()


@pytest.fixture
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def synchronizer(store_group: StoreGroup, channel: DeliveryChannel) -> StatusSynchronizer:
    return StatusSynchronizer(store_group, channel)


@pytest.fixture
def dispatcher(
    synchronizer: StatusSynchronizer,
    presence: PresenceRegistry,
    channel: DeliveryChannel,
) -> EventDispatcher:
    return EventDispatcher(synchronizer, presence, channel)


@pytest.fixture
def connect(channel: DeliveryChannel) -> Callable[[Identity], Connection]:
    """为用户创建并登记一条测试连接"""

    def _connect(identity: Identity, outbox_maxsize: int = 256) -> Connection:
        connection = Connection(identity.user_id, outbox_maxsize=outbox_maxsize)
        channel.register(connection)
        return connection

    return _connect


def drain(connection: Connection) -> list:
    """取出连接发送队列中已有的全部事件（不含哨兵）"""
    events = []
    while not connection.outbox.empty():
        event = connection.outbox.get_nowait()
        if event is not None:
            events.append(event)
    return events


@pytest.fixture
def drain_outbox() -> Callable[[Connection], list]:
    return drain


@pytest_asyncio.fixture
async def app(gateway_env: Path, store_group: StoreGroup):
    """创建测试用 FastAPI app 实例（手动初始化，绕过 lifespan）"""
    from parley.gateway.main import create_app, init_app_state

    application = create_app()
    init_app_state(application, store_group)
    yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def register(client: AsyncClient) -> Callable[..., Awaitable[tuple[dict, str]]]:
    """通过 HTTP 注册用户，返回 (user, session_token)，不保留 Cookie"""

    async def _register(username: str, email: str | None = None, **extra) -> tuple[dict, str]:
        resp = await client.post(
            "/api/users",
            json={"username": username, "email": email or f"{username}@example.com", **extra},
        )
        assert resp.status_code == 201, resp.text
        client.cookies.clear()
        data = resp.json()
        return data["user"], data["session_token"]

    return _register


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    return auth
