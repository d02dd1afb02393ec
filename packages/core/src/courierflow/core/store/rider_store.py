"""RiderStore SQLite 实现

current_order_id 是骑手的独占槽位：
claim 为 compare-and-set（仅当槽位为空且骑手在岗时成功），
release 仅在槽位确实被指定订单持有时清空。
claim/release 不自动提交，必须与事件写入在同一事务内完成。
"""

from datetime import datetime

import aiosqlite

from ..models.rider import RiderAvailability

_RIDER_COLUMNS = "rider_id, available, current_order_id, updated_at"


class SqliteRiderStore:
    """RiderStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def upsert_rider(self, rider_id: str, available: bool, updated_at: datetime) -> None:
        """登记骑手或更新在岗标记，保留当前槽位（不自动提交）"""
        await self._conn.execute(
            """
            INSERT INTO riders (rider_id, available, current_order_id, updated_at)
            VALUES (?, ?, NULL, ?)
            ON CONFLICT(rider_id) DO UPDATE SET
                available = excluded.available,
                updated_at = excluded.updated_at
            """,
            (rider_id, int(available), updated_at.isoformat()),
        )

    async def get_rider(self, rider_id: str) -> RiderAvailability | None:
        """根据 rider_id 查询骑手"""
        cursor = await self._conn.execute(
            f"SELECT {_RIDER_COLUMNS} FROM riders WHERE rider_id = ?",
            (rider_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_rider(row)

    async def list_riders(self, only_free: bool = False) -> list[RiderAvailability]:
        """查询骑手列表；only_free=True 时仅返回在岗且空闲的骑手"""
        if only_free:
            cursor = await self._conn.execute(
                f"SELECT {_RIDER_COLUMNS} FROM riders "
                "WHERE available = 1 AND current_order_id IS NULL ORDER BY rider_id ASC"
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_RIDER_COLUMNS} FROM riders ORDER BY rider_id ASC"
            )
        rows = await cursor.fetchall()
        return [self._row_to_rider(row) for row in rows]

    async def claim(self, rider_id: str, order_id: str, updated_at: datetime) -> bool:
        """占用骑手槽位（compare-and-set）

        Returns:
            True 如果占用成功；骑手不在岗或槽位已被占用时返回 False
        """
        cursor = await self._conn.execute(
            """
            UPDATE riders
            SET current_order_id = ?, updated_at = ?
            WHERE rider_id = ? AND available = 1 AND current_order_id IS NULL
            """,
            (order_id, updated_at.isoformat(), rider_id),
        )
        return cursor.rowcount == 1

    async def release(self, rider_id: str, order_id: str, updated_at: datetime) -> bool:
        """释放骑手槽位

        Returns:
            True 如果槽位原本由 order_id 持有并已清空
        """
        cursor = await self._conn.execute(
            """
            UPDATE riders
            SET current_order_id = NULL, updated_at = ?
            WHERE rider_id = ? AND current_order_id = ?
            """,
            (updated_at.isoformat(), rider_id, order_id),
        )
        return cursor.rowcount == 1

    async def reset_slots(self) -> None:
        """清空所有槽位（仅 rebuild 使用，不自动提交）"""
        await self._conn.execute("UPDATE riders SET current_order_id = NULL")

    async def set_slot(self, rider_id: str, order_id: str, updated_at: datetime) -> None:
        """直接写入槽位（仅 rebuild 使用），骑手不存在时按在岗登记"""
        await self._conn.execute(
            """
            INSERT INTO riders (rider_id, available, current_order_id, updated_at)
            VALUES (?, 1, ?, ?)
            ON CONFLICT(rider_id) DO UPDATE SET
                current_order_id = excluded.current_order_id,
                updated_at = excluded.updated_at
            """,
            (rider_id, order_id, updated_at.isoformat()),
        )

    @staticmethod
    def _row_to_rider(row: aiosqlite.Row) -> RiderAvailability:
        """将数据库行转换为 RiderAvailability 模型"""
        return RiderAvailability(
            rider_id=row[0],
            available=bool(row[1]),
            current_order_id=row[2],
            updated_at=datetime.fromisoformat(row[3]),
        )
