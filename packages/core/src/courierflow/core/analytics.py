"""AnalyticsAggregator -- 事件增量折叠为运行指标

指标：
- 已送达订单收入（Decimal 精确求和）
- 各状态当前订单数
- 各状态平均停留时长
- 履约率、平均送达耗时、骑手送达数

折叠是幂等的：seq <= last_seq 的事件直接忽略；时长使用整数微秒累加，
因此任意断点续读与从 0 全量重放得到的快照逐位一致。
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import structlog

from .models.enums import TERMINAL_STATES, EventType, OrderStatus
from .models.event import Event
from .models.metrics import MetricsSnapshot
from .store import StoreGroup
from .store.protocols import EventStore

log = structlog.get_logger()

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_US = timedelta(microseconds=1)

CHECKPOINT_NAME = "analytics"


def _to_us(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return (ts - _EPOCH) // _US


class AnalyticsAggregator:
    """运行指标聚合器"""

    def __init__(self) -> None:
        self.last_seq = 0
        self._revenue = Decimal("0")
        self._status_counts: dict[str, int] = {}
        self._status_time_us: dict[str, int] = {}
        self._status_exits: dict[str, int] = {}
        self._delivered = 0
        self._cancelled = 0
        self._delivery_time_us = 0
        self._deliveries_by_rider: dict[str, int] = {}
        # 进行中订单的工作集，终态后移除
        self._open_orders: dict[str, dict[str, Any]] = {}

    def on_event(self, event: Event) -> bool:
        """折叠一个已提交事件

        Returns:
            True 如果事件被应用；重复或过期事件返回 False
        """
        if event.seq <= self.last_seq:
            return False

        if event.type == EventType.ORDER_CREATED:
            self._open_orders[event.order_id] = {
                "amount": str(event.payload["amount"]),
                "status": OrderStatus.CREATED.value,
                "entered_us": _to_us(event.ts),
                "created_us": _to_us(event.ts),
                "rider_id": None,
            }
            self._bump(self._status_counts, OrderStatus.CREATED.value, 1)

        elif event.type == EventType.RIDER_ASSIGNED:
            state = self._open_orders.get(event.order_id)
            if state is not None:
                state["rider_id"] = event.payload["rider_id"]

        elif event.type == EventType.STATUS_CHANGED:
            self._apply_status_change(event)

        self.last_seq = event.seq
        return True

    def _apply_status_change(self, event: Event) -> None:
        state = self._open_orders.get(event.order_id)
        if state is None:
            log.warning("analytics_unknown_order", order_id=event.order_id, seq=event.seq)
            return

        now_us = _to_us(event.ts)
        from_status = state["status"]
        to_status = OrderStatus(event.payload["to_status"])

        self._bump(self._status_time_us, from_status, now_us - state["entered_us"])
        self._bump(self._status_exits, from_status, 1)
        self._bump(self._status_counts, from_status, -1)
        self._bump(self._status_counts, to_status.value, 1)

        state["status"] = to_status.value
        state["entered_us"] = now_us

        if to_status == OrderStatus.DELIVERED:
            self._revenue += Decimal(state["amount"])
            self._delivered += 1
            self._delivery_time_us += now_us - state["created_us"]
            rider_id = state["rider_id"] or event.payload.get("rider_id")
            if rider_id:
                self._bump(self._deliveries_by_rider, rider_id, 1)
        elif to_status == OrderStatus.CANCELLED:
            self._cancelled += 1

        if to_status in TERMINAL_STATES:
            del self._open_orders[event.order_id]

    @staticmethod
    def _bump(counter: dict[str, int], key: str, delta: int) -> None:
        value = counter.get(key, 0) + delta
        if value:
            counter[key] = value
        else:
            counter.pop(key, None)

    def snapshot(self) -> MetricsSnapshot:
        """当前指标快照（只读）"""
        finished = self._delivered + self._cancelled
        return MetricsSnapshot(
            last_seq=self.last_seq,
            completed_revenue=self._revenue,
            count_by_status=dict(sorted(self._status_counts.items())),
            mean_time_in_status_s={
                status: self._status_time_us[status] / self._status_exits[status] / 1_000_000
                for status in sorted(self._status_exits)
            },
            fulfillment_rate=self._delivered / finished if finished else None,
            mean_delivery_time_s=(
                self._delivery_time_us / self._delivered / 1_000_000 if self._delivered else None
            ),
            deliveries_by_rider=dict(sorted(self._deliveries_by_rider.items())),
        )

    # ---- 持久化与续读 ----

    def to_state(self) -> dict[str, Any]:
        """导出可 JSON 序列化的完整内部状态"""
        return {
            "last_seq": self.last_seq,
            "revenue": str(self._revenue),
            "status_counts": self._status_counts,
            "status_time_us": self._status_time_us,
            "status_exits": self._status_exits,
            "delivered": self._delivered,
            "cancelled": self._cancelled,
            "delivery_time_us": self._delivery_time_us,
            "deliveries_by_rider": self._deliveries_by_rider,
            "open_orders": self._open_orders,
        }

    @classmethod
    def from_state(cls, state: dict[str, Any]) -> "AnalyticsAggregator":
        agg = cls()
        agg.last_seq = int(state["last_seq"])
        agg._revenue = Decimal(state["revenue"])
        agg._status_counts = dict(state["status_counts"])
        agg._status_time_us = dict(state["status_time_us"])
        agg._status_exits = dict(state["status_exits"])
        agg._delivered = int(state["delivered"])
        agg._cancelled = int(state["cancelled"])
        agg._delivery_time_us = int(state["delivery_time_us"])
        agg._deliveries_by_rider = dict(state["deliveries_by_rider"])
        agg._open_orders = {k: dict(v) for k, v in state["open_orders"].items()}
        return agg

    async def catch_up(self, event_store: EventStore) -> int:
        """从 last_seq 之后续读事件日志

        Returns:
            本次应用的事件数
        """
        applied = 0
        async for event in event_store.read_all_from(self.last_seq):
            if self.on_event(event):
                applied += 1
        if applied:
            log.info("analytics_caught_up", applied=applied, last_seq=self.last_seq)
        return applied

    @classmethod
    async def rebuild(cls, event_store: EventStore) -> "AnalyticsAggregator":
        """从 seq 0 全量重放"""
        agg = cls()
        await agg.catch_up(event_store)
        return agg

    async def save_checkpoint(self, stores: StoreGroup) -> None:
        """持久化当前状态与 last_seq"""
        async with stores.write_scope():
            try:
                await stores.checkpoint_store.save(
                    CHECKPOINT_NAME, self.last_seq, self.to_state(), datetime.now(UTC)
                )
                await stores.conn.commit()
            except BaseException:
                await stores.conn.rollback()
                raise

    @classmethod
    async def load_checkpoint(cls, stores: StoreGroup) -> "AnalyticsAggregator":
        """读取断点；不存在时返回空聚合器"""
        saved = await stores.checkpoint_store.load(CHECKPOINT_NAME)
        if saved is None:
            return cls()
        _, state = saved
        return cls.from_state(state)
