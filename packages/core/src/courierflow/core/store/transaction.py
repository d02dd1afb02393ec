"""事件 + Projection + 骑手槽位 原子事务封装

在同一 SQLite 事务内提交事件、订单 projection 更新和骑手槽位变更：
要么全部可见，要么全部回滚。存储层异常统一包装为 WriteFailedError。
"""

from collections.abc import Callable, Sequence

import aiosqlite
import structlog

from ..exceptions import EngineError, RiderUnavailableError, WriteFailedError
from ..models.event import Event
from ..models.order import Order
from .event_store import SqliteEventStore
from .order_store import SqliteOrderStore
from .rider_store import SqliteRiderStore

log = structlog.get_logger()

# (rider_id, order_id)
SlotChange = tuple[str, str]


async def _rollback_quietly(conn: aiosqlite.Connection, order_id: str) -> None:
    try:
        await conn.rollback()
    except Exception as e:
        log.error("rollback_failed", order_id=order_id, error_type=type(e).__name__)


async def append_events(
    conn: aiosqlite.Connection,
    event_store: SqliteEventStore,
    events: Sequence[Event],
) -> list[Event]:
    """原子追加一组事件并提交

    Returns:
        已提交的事件（带全局 seq）

    Raises:
        WriteFailedError: 写入或提交失败，事务已回滚
    """
    order_id = events[0].order_id if events else ""
    try:
        committed = [await event_store.append_event(event) for event in events]
        await conn.commit()
    except BaseException as e:
        await _rollback_quietly(conn, order_id)
        if isinstance(e, Exception):
            raise WriteFailedError(order_id, e) from e
        raise
    return committed


async def commit_order_events(
    conn: aiosqlite.Connection,
    event_store: SqliteEventStore,
    order_store: SqliteOrderStore,
    rider_store: SqliteRiderStore,
    events: Sequence[Event],
    build_order: Callable[[list[Event]], Order],
    claims: Sequence[SlotChange] = (),
    releases: Sequence[SlotChange] = (),
) -> tuple[list[Event], Order]:
    """在同一事务内提交事件、订单 projection 与骑手槽位变更

    Args:
        conn: 写连接（需在同一连接上操作以保证事务性）
        event_store: EventStore 实例
        order_store: OrderStore 实例
        rider_store: RiderStore 实例
        events: 待写入事件（seq 未分配）
        build_order: 由已提交事件计算新 projection 的函数
        claims: 需要占用的骑手槽位
        releases: 需要释放的骑手槽位（先于 claims 执行）

    Returns:
        (已提交事件, 新订单 projection)

    Raises:
        RiderUnavailableError: 槽位 compare-and-set 失败，事务已回滚
        WriteFailedError: 存储层失败，事务已回滚
    """
    order_id = events[0].order_id
    now = events[-1].ts
    try:
        committed = [await event_store.append_event(event) for event in events]
        order = build_order(committed)
        await order_store.save_order(order)

        for rider_id, held_order_id in releases:
            released = await rider_store.release(rider_id, held_order_id, now)
            if not released:
                log.warning(
                    "rider_slot_release_mismatch",
                    rider_id=rider_id,
                    order_id=held_order_id,
                )

        for rider_id, claimed_order_id in claims:
            if not await rider_store.claim(rider_id, claimed_order_id, now):
                raise RiderUnavailableError(rider_id, "slot already taken or rider off shift")

        await conn.commit()
    except EngineError:
        await _rollback_quietly(conn, order_id)
        raise
    except BaseException as e:
        await _rollback_quietly(conn, order_id)
        if isinstance(e, Exception):
            log.error(
                "order_write_failed",
                order_id=order_id,
                error_type=type(e).__name__,
            )
            raise WriteFailedError(order_id, e) from e
        raise

    return committed, order
