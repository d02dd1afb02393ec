"""全局 pytest 配置 -- 临时 SQLite 数据库与引擎 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from courierflow.core.config import EngineConfig
from courierflow.core.engine import DispatchEngine
from courierflow.core.hub import NotificationHub
from courierflow.core.store import StoreGroup, create_store_group


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供已初始化的 Store 实例组（写连接 + 读连接）"""
    stores = await create_store_group(str(tmp_db_path), page_size=3)
    yield stores
    await stores.close()


@pytest_asyncio.fixture
async def hub() -> NotificationHub:
    return NotificationHub()


@pytest_asyncio.fixture
async def engine(
    tmp_db_path: Path, hub: NotificationHub
) -> AsyncGenerator[DispatchEngine, None]:
    """提供使用内存通知通道的引擎实例"""
    engine = await DispatchEngine.open(
        str(tmp_db_path),
        config=EngineConfig(command_timeout_s=2.0, read_page_size=3),
        transport=hub,
    )
    yield engine
    await engine.close()
