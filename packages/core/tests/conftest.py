"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from parley.core.models import Identity
from parley.core.store import StoreGroup, create_store_group


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时数据库路径"""
    return tmp_path / "core_test.db"


@pytest_asyncio.fixture
async def store_group(
    core_db_path: Path, field_key: str
) -> AsyncGenerator[StoreGroup, None]:
    """核心层已初始化的 Store 实例组"""
    group = await create_store_group(str(core_db_path), field_key)
    yield group
    await group.conn.close()


@pytest_asyncio.fixture
async def alice(store_group: StoreGroup) -> Identity:
    return await store_group.user_store.create_user(
        "alice", "alice@example.com", profession="engineer", location="Lisbon"
    )


@pytest_asyncio.fixture
async def bob(store_group: StoreGroup) -> Identity:
    return await store_group.user_store.create_user("bob", "bob@example.com")
