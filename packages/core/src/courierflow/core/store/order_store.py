"""OrderStore SQLite 实现

orders 表是 events 的物化视图（projection）。
所有状态更新必须通过事件触发，此处仅提供数据库操作。
"""

import json
from datetime import datetime
from decimal import Decimal

import aiosqlite
from pydantic import TypeAdapter

from ..models.order import CompletionProof, Order, StatusChange

_ORDER_COLUMNS = (
    "order_id, customer_ref, amount, status, rider_id, created_at, updated_at, "
    "status_history, proof, notes, latest_seq, latest_order_seq"
)

_history_adapter = TypeAdapter(list[StatusChange])


class SqliteOrderStore:
    """OrderStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def save_order(self, order: Order) -> None:
        """写入或覆盖订单 projection（不自动提交）"""
        await self._conn.execute(
            f"""
            INSERT OR REPLACE INTO orders ({_ORDER_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.order_id,
                order.customer_ref,
                str(order.amount),
                order.status.value,
                order.rider_id,
                order.created_at.isoformat(),
                order.updated_at.isoformat(),
                _history_adapter.dump_json(order.status_history).decode("utf-8"),
                order.proof.model_dump_json() if order.proof else None,
                order.notes,
                order.latest_seq,
                order.latest_order_seq,
            ),
        )

    async def get_order(self, order_id: str) -> Order | None:
        """根据 order_id 查询订单"""
        cursor = await self._conn.execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE order_id = ?",
            (order_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_order(row)

    async def list_orders(self, status: str | None = None) -> list[Order]:
        """查询订单列表，支持按状态筛选，按 created_at 倒序"""
        if status:
            cursor = await self._conn.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE status = ? "
                "ORDER BY created_at DESC, order_id DESC",
                (status,),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders ORDER BY created_at DESC, order_id DESC"
            )
        rows = await cursor.fetchall()
        return [self._row_to_order(row) for row in rows]

    async def clear(self) -> None:
        """清空 projection（仅 rebuild 使用，不自动提交）"""
        await self._conn.execute("DELETE FROM orders")

    @staticmethod
    def _row_to_order(row: aiosqlite.Row) -> Order:
        """将数据库行转换为 Order 模型"""
        proof_data = json.loads(row[8]) if row[8] else None
        return Order(
            order_id=row[0],
            customer_ref=row[1],
            amount=Decimal(row[2]),
            status=row[3],
            rider_id=row[4],
            created_at=datetime.fromisoformat(row[5]),
            updated_at=datetime.fromisoformat(row[6]),
            status_history=_history_adapter.validate_json(row[7]),
            proof=CompletionProof(**proof_data) if proof_data else None,
            notes=row[9],
            latest_seq=row[10],
            latest_order_seq=row[11],
        )
