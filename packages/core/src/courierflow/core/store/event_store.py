"""EventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
seq 由 AUTOINCREMENT 分配，全局严格递增；order_seq 同一订单内严格单调递增。
"""

import json
from collections.abc import AsyncIterator
from datetime import datetime

import aiosqlite

from ..models.enums import ActorRole, EventType
from ..models.event import Event

_EVENT_COLUMNS = (
    "seq, event_id, order_id, order_seq, ts, type, schema_version, "
    "actor_role, actor_id, payload, trace_id"
)


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection, page_size: int = 200) -> None:
        self._conn = conn
        self._page_size = page_size

    async def append_event(self, event: Event) -> Event:
        """追加事件（append-only），返回带全局 seq 的事件

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        cursor = await self._conn.execute(
            """
            INSERT INTO events (event_id, order_id, order_seq, ts, type,
                                schema_version, actor_role, actor_id, payload, trace_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.order_id,
                event.order_seq,
                event.ts.isoformat(),
                event.type.value,
                event.schema_version,
                event.actor_role.value,
                event.actor_id,
                json.dumps(event.payload, ensure_ascii=False, sort_keys=True),
                event.trace_id,
            ),
        )
        return event.model_copy(update={"seq": cursor.lastrowid})

    async def get_events_for_order(self, order_id: str) -> list[Event]:
        """查询指定订单的所有事件，按 order_seq 正序"""
        return [event async for event in self.read_from(order_id, 0)]

    async def read_from(self, order_id: str, since_seq: int = 0) -> AsyncIterator[Event]:
        """惰性读取指定订单 order_seq > since_seq 的事件

        分页读取，结果有限；中断后以最后一个 order_seq 再次调用即可续读。
        """
        cursor_seq = since_seq
        while True:
            cursor = await self._conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS} FROM events
                WHERE order_id = ? AND order_seq > ?
                ORDER BY order_seq ASC
                LIMIT ?
                """,
                (order_id, cursor_seq, self._page_size),
            )
            rows = await cursor.fetchall()
            for row in rows:
                yield self._row_to_event(row)
            if len(rows) < self._page_size:
                return
            cursor_seq = rows[-1][3]

    async def read_all_from(self, since_seq: int = 0) -> AsyncIterator[Event]:
        """按全局 seq 惰性读取 seq > since_seq 的所有事件（统计续读 / 重建用）"""
        cursor_seq = since_seq
        while True:
            cursor = await self._conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS} FROM events
                WHERE seq > ?
                ORDER BY seq ASC
                LIMIT ?
                """,
                (cursor_seq, self._page_size),
            )
            rows = await cursor.fetchall()
            for row in rows:
                yield self._row_to_event(row)
            if len(rows) < self._page_size:
                return
            cursor_seq = rows[-1][0]

    async def get_all_events(self) -> list[Event]:
        """查询所有事件，按全局 seq 排序（用于 Projection 重建）"""
        return [event async for event in self.read_all_from(0)]

    async def get_next_order_seq(self, order_id: str) -> int:
        """获取指定订单的下一个 order_seq（MAX+1）"""
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(order_seq), 0) FROM events WHERE order_id = ?",
            (order_id,),
        )
        row = await cursor.fetchone()
        return (row[0] if row else 0) + 1

    async def get_last_seq(self) -> int:
        """获取当前最大全局 seq，空日志返回 0"""
        cursor = await self._conn.execute("SELECT COALESCE(MAX(seq), 0) FROM events")
        row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> Event:
        """将数据库行转换为 Event 模型"""
        payload = json.loads(row[9]) if row[9] else {}
        return Event(
            seq=row[0],
            event_id=row[1],
            order_id=row[2],
            order_seq=row[3],
            ts=datetime.fromisoformat(row[4]),
            type=EventType(row[5]),
            schema_version=row[6],
            actor_role=ActorRole(row[7]),
            actor_id=row[8],
            payload=payload,
            trace_id=row[10],
        )
