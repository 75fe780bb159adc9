"""集成测试共享 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from parley.core.store import create_store_group


@pytest.fixture
def integration_env(tmp_path: Path, field_key: str, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("PARLEY_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("PARLEY_DB_PATH", str(db_path))
    monkeypatch.setenv("PARLEY_FIELD_KEY", field_key)
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return db_path


@pytest_asyncio.fixture
async def integration_app(integration_env: Path, field_key: str):
    """集成测试用 FastAPI app"""
    from parley.gateway.main import create_app, init_app_state

    app = create_app()
    store_group = await create_store_group(str(integration_env), field_key)
    init_app_state(app, store_group)

    yield app

    await store_group.conn.close()


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
