"""AssignmentCoordinator -- 骑手指派的串行化协调

保证：
- 每个订单最多一次成功指派（改派必须显式给出当前骑手）
- 每个骑手同一时刻最多持有一个订单

同一订单或同一骑手上的并发命令通过按 key 的 asyncio.Lock 串行化；
加锁顺序固定为先订单后骑手（骑手按 id 排序），避免死锁。
锁等待有上限，超时抛出 EngineTimeoutError，不做内部重试。
数据库层的槽位 compare-and-set 与唯一索引作为第二道防线。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from .exceptions import (
    EngineTimeoutError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotAssignableError,
    RiderUnavailableError,
)
from .models.enums import ActorRole, EventType, OrderStatus
from .models.event import Event
from .models.order import Order
from .models.payloads import RiderAssignedPayload, StatusChangedPayload
from .models.rider import RiderAvailability
from .store import StoreGroup
from .store.transaction import SlotChange
from .validator import TransitionValidator
from .writer import EventWriter

log = structlog.get_logger()


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


def rider_key(rider_id: str) -> str:
    return f"rider:{rider_id}"


class KeyedLocks:
    """按 key 分配的 asyncio.Lock 集合"""

    def __init__(self, timeout_s: float) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = asyncio.Lock()
        self._timeout_s = timeout_s

    async def _get_lock(self, key: str) -> asyncio.Lock:
        async with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """按给定顺序获取多把锁，退出时逆序释放

        Raises:
            EngineTimeoutError: 任一把锁在超时时间内未获得
        """
        acquired: list[asyncio.Lock] = []
        try:
            for key in dict.fromkeys(keys):
                lock = await self._get_lock(key)
                try:
                    async with asyncio.timeout(self._timeout_s):
                        await lock.acquire()
                except TimeoutError:
                    log.warning("lock_timeout", key=key, timeout_s=self._timeout_s)
                    raise EngineTimeoutError(key, self._timeout_s) from None
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    async def discard(self, key: str) -> None:
        """订单终态后清理 lock，避免字典无限增长"""
        async with self._guard:
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class AssignmentCoordinator:
    """骑手指派协调器"""

    def __init__(
        self,
        stores: StoreGroup,
        writer: EventWriter,
        validator: TransitionValidator,
        locks: KeyedLocks,
    ) -> None:
        self._stores = stores
        self._writer = writer
        self._validator = validator
        self._locks = locks

    @asynccontextmanager
    async def order_scope(self, order_id: str) -> AsyncIterator[None]:
        """串行化同一订单上的命令"""
        async with self._locks.hold(order_key(order_id)):
            yield

    @asynccontextmanager
    async def rider_scope(self, *rider_ids: str) -> AsyncIterator[None]:
        """串行化同一骑手上的命令（须在 order_scope 内部获取）"""
        async with self._locks.hold(*(rider_key(r) for r in sorted(set(rider_ids)))):
            yield

    async def release_order_lock(self, order_id: str) -> None:
        await self._locks.discard(order_key(order_id))

    async def load_order(self, order_id: str) -> Order:
        order = await self._stores.order_reader.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def load_rider(self, rider_id: str) -> RiderAvailability:
        rider = await self._stores.rider_reader.get_rider(rider_id)
        if rider is None:
            raise NotFoundError("Rider", rider_id)
        return rider

    @staticmethod
    def releases_for(order: Order) -> list[SlotChange]:
        """订单离开持有状态时需要释放的槽位"""
        if order.occupies_rider and order.rider_id:
            return [(order.rider_id, order.order_id)]
        return []

    @staticmethod
    def _check_rider_free(rider: RiderAvailability) -> None:
        if not rider.available:
            raise RiderUnavailableError(rider.rider_id, "rider is off shift")
        if rider.current_order_id is not None:
            raise RiderUnavailableError(
                rider.rider_id, f"rider already holds order {rider.current_order_id}"
            )

    async def assign(
        self,
        order_id: str,
        rider_id: str,
        actor_role: ActorRole,
        actor_id: str = "",
    ) -> tuple[list[Event], Order]:
        """指派骑手：CREATED -> ASSIGNED

        Returns:
            (已提交事件, 新订单状态)

        Raises:
            NotFoundError: 订单或骑手不存在
            OrderNotAssignableError: 订单不在 CREATED 状态
            InvalidTransitionError: 发起者无权指派
            RiderUnavailableError: 骑手不在岗或已持有订单
            EngineTimeoutError: 锁等待超时
        """
        async with self.order_scope(order_id), self.rider_scope(rider_id):
            order = await self.load_order(order_id)
            if order.status != OrderStatus.CREATED:
                raise OrderNotAssignableError(order_id, f"order is {order.status.value}")

            decision = self._validator.validate(
                order.status, OrderStatus.ASSIGNED, actor_role, rider_id
            )
            decision.raise_if_rejected()

            rider = await self.load_rider(rider_id)
            self._check_rider_free(rider)

            seq = order.latest_order_seq
            events = [
                self._writer.build_event(
                    order_id,
                    seq + 1,
                    EventType.RIDER_ASSIGNED,
                    actor_role,
                    RiderAssignedPayload(
                        rider_id=rider_id,
                        customer_ref=order.customer_ref,
                    ).model_dump(mode="json"),
                    actor_id=actor_id,
                ),
            ]
            events.append(
                self._writer.build_event(
                    order_id,
                    seq + 2,
                    EventType.STATUS_CHANGED,
                    actor_role,
                    StatusChangedPayload(
                        from_status=order.status,
                        to_status=OrderStatus.ASSIGNED,
                        customer_ref=order.customer_ref,
                        rider_id=rider_id,
                    ).model_dump(mode="json"),
                    actor_id=actor_id,
                    ts=events[0].ts,
                )
            )
            committed, updated = await self._writer.commit(
                order, events, claims=[(rider_id, order_id)]
            )

        await log.ainfo(
            "rider_assigned",
            order_id=order_id,
            rider_id=rider_id,
            seq=committed[-1].seq,
        )
        return committed, updated

    async def reassign(
        self,
        order_id: str,
        new_rider_id: str,
        expected_rider_id: str,
        actor_role: ActorRole,
        actor_id: str = "",
    ) -> tuple[list[Event], Order]:
        """改派：仅在 ASSIGNED（取货前）且当前骑手与 expected_rider_id 一致时允许

        旧骑手槽位释放与新骑手槽位占用在同一事务内完成。
        """
        async with (
            self.order_scope(order_id),
            self.rider_scope(new_rider_id, expected_rider_id),
        ):
            order = await self.load_order(order_id)
            if order.status != OrderStatus.ASSIGNED:
                raise OrderNotAssignableError(
                    order_id,
                    f"reassignment is only possible before pickup, order is {order.status.value}",
                )
            if actor_role != ActorRole.AGENT:
                raise InvalidTransitionError(
                    order.status.value, OrderStatus.ASSIGNED.value, "only an agent may reassign"
                )
            if order.rider_id != expected_rider_id:
                raise OrderNotAssignableError(
                    order_id, f"order is held by {order.rider_id}, not {expected_rider_id}"
                )
            if new_rider_id == expected_rider_id:
                raise OrderNotAssignableError(order_id, f"order is already held by {new_rider_id}")

            rider = await self.load_rider(new_rider_id)
            self._check_rider_free(rider)

            event = self._writer.build_event(
                order_id,
                order.latest_order_seq + 1,
                EventType.RIDER_ASSIGNED,
                actor_role,
                RiderAssignedPayload(
                    rider_id=new_rider_id,
                    customer_ref=order.customer_ref,
                    previous_rider_id=expected_rider_id,
                ).model_dump(mode="json"),
                actor_id=actor_id,
            )
            committed, updated = await self._writer.commit(
                order,
                [event],
                claims=[(new_rider_id, order_id)],
                releases=[(expected_rider_id, order_id)],
            )

        await log.ainfo(
            "rider_reassigned",
            order_id=order_id,
            rider_id=new_rider_id,
            previous_rider_id=expected_rider_id,
        )
        return committed, updated
