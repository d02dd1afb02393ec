"""Projection 重建模块

从 events 表重建 orders 表与骑手槽位（物化视图），确保事件溯源的一致性。
命令提交与全量重建共用 apply_event，在线 projection 与重放结果逐字段一致。
"""

import time
from collections.abc import Iterable
from decimal import Decimal

import structlog

from .models.enums import EventType, OrderStatus
from .models.event import Event
from .models.order import CompletionProof, Order, StatusChange
from .store import StoreGroup

log = structlog.get_logger()


def _advance(order: Order, event: Event, **changes) -> Order:
    return order.model_copy(
        update={
            "updated_at": event.ts,
            "latest_seq": event.seq,
            "latest_order_seq": event.order_seq,
            **changes,
        }
    )


def apply_event(orders: dict[str, Order], event: Event) -> None:
    """将单个事件应用到 Order 状态（内存中操作）

    Args:
        orders: order_id -> Order 的映射表（会被就地修改）
        event: 要应用的已提交事件
    """
    order_id = event.order_id
    payload = event.payload

    if event.type == EventType.ORDER_CREATED:
        orders[order_id] = Order(
            order_id=order_id,
            customer_ref=payload["customer_ref"],
            amount=Decimal(str(payload["amount"])),
            status=OrderStatus.CREATED,
            created_at=event.ts,
            updated_at=event.ts,
            status_history=[
                StatusChange(
                    status=OrderStatus.CREATED,
                    at=event.ts,
                    actor_role=event.actor_role,
                    actor_id=event.actor_id,
                )
            ],
            notes=payload.get("notes", ""),
            latest_seq=event.seq,
            latest_order_seq=event.order_seq,
        )
        return

    order = orders.get(order_id)
    if order is None:
        log.warning("projection_orphan_event", order_id=order_id, event_id=event.event_id)
        return

    if event.type == EventType.STATUS_CHANGED:
        new_status = OrderStatus(payload["to_status"])
        change = StatusChange(
            status=new_status,
            at=event.ts,
            actor_role=event.actor_role,
            actor_id=event.actor_id,
        )
        orders[order_id] = _advance(
            order,
            event,
            status=new_status,
            status_history=[*order.status_history, change],
        )
    elif event.type == EventType.RIDER_ASSIGNED:
        orders[order_id] = _advance(order, event, rider_id=payload["rider_id"])
    elif event.type == EventType.DELIVERY_CONFIRMED:
        proof = CompletionProof(
            kind=payload["proof_kind"],
            reference=payload["proof_reference"],
        )
        orders[order_id] = _advance(order, event, proof=proof)


def fold_events(current: Order | None, events: Iterable[Event]) -> Order:
    """在已有订单状态上依次应用事件，返回新状态

    Raises:
        KeyError: 事件序列未产生订单（缺少 ORDER_CREATED）
    """
    orders: dict[str, Order] = {}
    order_id = None
    if current is not None:
        orders[current.order_id] = current
        order_id = current.order_id
    for event in events:
        order_id = event.order_id
        apply_event(orders, event)
    if order_id is None:
        raise KeyError("no events to fold")
    return orders[order_id]


async def replay_orders(stores: StoreGroup) -> dict[str, Order]:
    """从事件日志重放全部订单状态（不落库）"""
    orders: dict[str, Order] = {}
    async for event in stores.event_store.read_all_from(0):
        apply_event(orders, event)
    return orders


async def rebuild_all(stores: StoreGroup) -> int:
    """从 events 表重建 orders 表与骑手槽位

    流程：
    1. 按全局 seq 读取所有事件并在内存中应用
    2. 清空 orders 表与骑手槽位
    3. 写入重建后的订单，并按订单状态恢复骑手槽位
    4. 单事务提交

    Returns:
        处理的事件总数
    """
    start_time = time.monotonic()

    async with stores.write_scope():
        orders: dict[str, Order] = {}
        event_count = 0
        async for event in stores.event_store.read_all_from(0):
            apply_event(orders, event)
            event_count += 1

        await log.ainfo("projection_rebuild_started", event_count=event_count)

        try:
            await stores.order_store.clear()
            await stores.rider_store.reset_slots()
            for order in orders.values():
                await stores.order_store.save_order(order)
                if order.occupies_rider:
                    await stores.rider_store.set_slot(
                        order.rider_id,
                        order.order_id,
                        order.updated_at,
                    )
            await stores.conn.commit()
        except BaseException:
            await stores.conn.rollback()
            raise

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "projection_rebuild_completed",
        event_count=event_count,
        order_count=len(orders),
        elapsed_ms=elapsed_ms,
    )

    return event_count
