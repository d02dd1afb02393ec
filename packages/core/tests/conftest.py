"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from courierflow.core.models import ActorRole, Event, EventType


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时数据库路径"""
    return tmp_path / "core_test.db"


@pytest_asyncio.fixture
async def core_db(core_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """核心层已初始化数据库连接"""
    from courierflow.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(core_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def make_event():
    """构造事件的工厂函数（seq 未分配）"""
    counter = {"n": 0}

    def _make(
        order_id: str,
        order_seq: int,
        event_type: EventType,
        payload: dict,
        actor_role: ActorRole = ActorRole.AGENT,
        ts: datetime | None = None,
        seq: int = 0,
    ) -> Event:
        counter["n"] += 1
        return Event(
            event_id=f"01JEVT{counter['n']:020d}",
            seq=seq,
            order_id=order_id,
            order_seq=order_seq,
            ts=ts or datetime.now(UTC),
            type=event_type,
            actor_role=actor_role,
            payload=payload,
            trace_id=f"trace-{order_id}",
        )

    return _make
