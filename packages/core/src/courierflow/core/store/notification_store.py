"""NotificationStore SQLite 实现

按 (event_id, recipient_role, kind) 去重记录通知意图，
同一事件重复投递给 dispatcher 时不会产生第二条记录。
所有写方法不自动提交，由调用方管理事务。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import NotificationKind, RecipientRole
from ..models.notification import NotificationIntent

_INTENT_COLUMNS = "intent_id, event_id, recipient_role, recipient_id, order_id, kind, payload"

STATUS_PENDING = "pending"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"


class SqliteNotificationStore:
    """NotificationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def record_intent(self, intent: NotificationIntent, now: datetime) -> bool:
        """记录通知意图（INSERT OR IGNORE）

        Returns:
            True 如果是新记录；已存在同一 (event_id, recipient_role, kind) 时返回 False
        """
        cursor = await self._conn.execute(
            """
            INSERT OR IGNORE INTO notifications
                (intent_id, event_id, recipient_role, recipient_id, order_id, kind,
                 payload, status, attempts, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            """,
            (
                intent.intent_id,
                intent.event_id,
                intent.recipient_role.value,
                intent.recipient_id,
                intent.order_id,
                intent.kind.value,
                json.dumps(intent.payload, ensure_ascii=False, sort_keys=True),
                STATUS_PENDING,
                now.isoformat(),
                now.isoformat(),
            ),
        )
        return cursor.rowcount == 1

    async def mark_delivered(self, intent_id: str, now: datetime) -> None:
        await self._conn.execute(
            """
            UPDATE notifications
            SET status = ?, attempts = attempts + 1, last_error = '', updated_at = ?
            WHERE intent_id = ?
            """,
            (STATUS_DELIVERED, now.isoformat(), intent_id),
        )

    async def mark_failed(self, intent_id: str, error: str, now: datetime) -> None:
        await self._conn.execute(
            """
            UPDATE notifications
            SET status = ?, attempts = attempts + 1, last_error = ?, updated_at = ?
            WHERE intent_id = ?
            """,
            (STATUS_FAILED, error, now.isoformat(), intent_id),
        )

    async def list_by_status(self, status: str) -> list[NotificationIntent]:
        """按投递状态查询通知意图，按创建顺序"""
        cursor = await self._conn.execute(
            f"SELECT {_INTENT_COLUMNS} FROM notifications WHERE status = ? "
            "ORDER BY created_at ASC, intent_id ASC",
            (status,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_intent(row) for row in rows]

    async def list_undelivered(
        self, pending_before: datetime | None = None
    ) -> list[NotificationIntent]:
        """查询待补投的通知意图

        failed 全部返回；pending 仅当 updated_at <= pending_before
        （投递被中断、进程崩溃后遗留的记录）。
        """
        if pending_before is None:
            return await self.list_by_status(STATUS_FAILED)
        cursor = await self._conn.execute(
            f"SELECT {_INTENT_COLUMNS} FROM notifications "
            "WHERE status = ? OR (status = ? AND updated_at <= ?) "
            "ORDER BY created_at ASC, intent_id ASC",
            (STATUS_FAILED, STATUS_PENDING, pending_before.isoformat()),
        )
        rows = await cursor.fetchall()
        return [self._row_to_intent(row) for row in rows]

    async def list_for_order(self, order_id: str) -> list[NotificationIntent]:
        """查询订单相关的全部通知意图"""
        cursor = await self._conn.execute(
            f"SELECT {_INTENT_COLUMNS} FROM notifications WHERE order_id = ? "
            "ORDER BY created_at ASC, intent_id ASC",
            (order_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_intent(row) for row in rows]

    async def get_attempts(self, intent_id: str) -> tuple[str, int] | None:
        """查询投递状态与尝试次数"""
        cursor = await self._conn.execute(
            "SELECT status, attempts FROM notifications WHERE intent_id = ?",
            (intent_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return row[0], row[1]

    @staticmethod
    def _row_to_intent(row: aiosqlite.Row) -> NotificationIntent:
        return NotificationIntent(
            intent_id=row[0],
            event_id=row[1],
            recipient_role=RecipientRole(row[2]),
            recipient_id=row[3],
            order_id=row[4],
            kind=NotificationKind(row[5]),
            payload=json.loads(row[6]) if row[6] else {},
        )
