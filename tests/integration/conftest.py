"""集成测试共享 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from courierflow.core.config import EngineConfig
from courierflow.core.engine import DispatchEngine
from courierflow.core.hub import NotificationHub


@pytest_asyncio.fixture
async def integration_db(tmp_path: Path) -> str:
    return str(tmp_path / "integration.db")


@pytest_asyncio.fixture
async def live_engine(
    integration_db: str, hub: NotificationHub
) -> AsyncGenerator[DispatchEngine, None]:
    """集成测试用引擎（分页较小，覆盖跨页读取）"""
    engine = await DispatchEngine.open(
        integration_db,
        config=EngineConfig(command_timeout_s=5.0, read_page_size=4),
        transport=hub,
    )
    yield engine
    await engine.close()


@pytest_asyncio.fixture
async def riders(live_engine: DispatchEngine) -> list[str]:
    """预先登记的在岗骑手"""
    rider_ids = [f"rider-{i}" for i in range(1, 5)]
    for rider_id in rider_ids:
        await live_engine.register_rider(rider_id)
    return rider_ids
