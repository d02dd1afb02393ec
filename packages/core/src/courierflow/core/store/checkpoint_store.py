"""CheckpointStore SQLite 实现 -- 事件折叠断点持久化（统计、通知各一行）"""

import json
from datetime import datetime
from typing import Any

import aiosqlite


class SqliteCheckpointStore:
    """analytics_checkpoint 表读写"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def save(self, name: str, last_seq: int, state: dict[str, Any], now: datetime) -> None:
        """写入断点（不自动提交）"""
        await self._conn.execute(
            """
            INSERT INTO analytics_checkpoint (name, last_seq, state, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                last_seq = excluded.last_seq,
                state = excluded.state,
                updated_at = excluded.updated_at
            """,
            (name, last_seq, json.dumps(state, sort_keys=True), now.isoformat()),
        )

    async def load(self, name: str) -> tuple[int, dict[str, Any]] | None:
        """读取断点，不存在时返回 None"""
        cursor = await self._conn.execute(
            "SELECT last_seq, state FROM analytics_checkpoint WHERE name = ?",
            (name,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return row[0], json.loads(row[1])
