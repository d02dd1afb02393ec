"""EventWriter -- 命令写入路径

负责为订单构建带 order_seq 的事件，并在 write_lock 内以单事务提交。
提交步骤在 asyncio.shield 中执行：调用方被取消时事务仍会完整提交或完整回滚，
调用方在事务落定之后才收到 CancelledError（此时才释放外层的订单/骑手锁）。
"""

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from ulid import ULID

from .models.enums import ActorRole, EventType
from .models.event import Event
from .models.order import Order
from .projection import fold_events
from .store import StoreGroup
from .store.transaction import SlotChange, commit_order_events

log = structlog.get_logger()

# 提交后在 write_lock 内同步调用的钩子（按全局 seq 顺序）
CommitHook = Callable[[Event], None]


class EventWriter:
    """订单事件写入器"""

    def __init__(self, stores: StoreGroup) -> None:
        self._stores = stores
        self._hooks: list[CommitHook] = []

    def add_commit_hook(self, hook: CommitHook) -> None:
        """注册提交钩子；钩子异常只记录日志，不影响命令结果"""
        self._hooks.append(hook)

    @staticmethod
    def build_event(
        order_id: str,
        order_seq: int,
        event_type: EventType,
        actor_role: ActorRole,
        payload: dict[str, Any],
        actor_id: str = "",
        ts: datetime | None = None,
    ) -> Event:
        """构建待提交事件（seq 由事件日志在提交时分配）"""
        return Event(
            event_id=str(ULID()),
            order_id=order_id,
            order_seq=order_seq,
            ts=ts or datetime.now(UTC),
            type=event_type,
            actor_role=actor_role,
            actor_id=actor_id,
            payload=payload,
            trace_id=f"trace-{order_id}",
        )

    async def commit(
        self,
        current: Order | None,
        events: Sequence[Event],
        claims: Sequence[SlotChange] = (),
        releases: Sequence[SlotChange] = (),
    ) -> tuple[list[Event], Order]:
        """原子提交事件 + projection + 槽位变更

        Raises:
            RiderUnavailableError: 槽位 compare-and-set 失败
            WriteFailedError: 存储层失败
            EngineTimeoutError: 超时未获得 write_lock（此时未写入任何数据）
        """
        async with self._stores.write_scope():
            task = asyncio.ensure_future(self._commit(current, events, claims, releases))
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                # 等待事务落定后再向上传播取消
                try:
                    await task
                except Exception as e:
                    log.warning(
                        "cancelled_command_commit_failed",
                        order_id=events[0].order_id,
                        error_type=type(e).__name__,
                    )
                raise

    async def _commit(
        self,
        current: Order | None,
        events: Sequence[Event],
        claims: Sequence[SlotChange],
        releases: Sequence[SlotChange],
    ) -> tuple[list[Event], Order]:
        # 调用方已持有 write_lock
        stores = self._stores
        committed, order = await commit_order_events(
            stores.conn,
            stores.event_store,
            stores.order_store,
            stores.rider_store,
            events,
            lambda done: fold_events(current, done),
            claims=claims,
            releases=releases,
        )
        for event in committed:
            self._run_hooks(event)
        return committed, order

    def _run_hooks(self, event: Event) -> None:
        for hook in self._hooks:
            try:
                hook(event)
            except Exception as e:
                log.error(
                    "commit_hook_failed",
                    hook=getattr(hook, "__qualname__", repr(hook)),
                    event_id=event.event_id,
                    order_id=event.order_id,
                    event_type=event.type.value,
                    seq=event.seq,
                    error_type=type(e).__name__,
                    error=str(e),
                )
