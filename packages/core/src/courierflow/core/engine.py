"""DispatchEngine -- 订单生命周期与指派引擎的命令入口

命令流程：
1. 获取订单锁（涉及骑手时再获取骑手锁）
2. 读取已提交的订单状态，交由 TransitionValidator 校验
3. 单事务写入事件 + 订单 projection + 骑手槽位
4. 提交钩子内按 seq 顺序折叠统计指标
5. 释放锁后分发通知（单次投递有超时，失败只记录日志，不影响命令结果）
"""

from datetime import UTC, datetime
from decimal import Decimal

import structlog
from ulid import ULID

from .analytics import AnalyticsAggregator
from .config import EngineConfig, get_db_path, load_engine_config
from .coordinator import AssignmentCoordinator, KeyedLocks
from .dispatcher import NotificationDispatcher
from .exceptions import NotFoundError, OrderNotAssignableError, RiderUnavailableError
from .models.enums import TERMINAL_STATES, ActorRole, EventType, OrderStatus
from .models.event import Event
from .models.metrics import MetricsSnapshot
from .models.notification import NotificationIntent
from .models.order import CompletionProof, Order
from .models.payloads import (
    DeliveryConfirmedPayload,
    OrderCreatedPayload,
    StatusChangedPayload,
)
from .models.rider import RiderAvailability
from .store import StoreGroup, create_store_group
from .store.protocols import NotificationTransport
from .validator import TransitionValidator
from .writer import EventWriter

log = structlog.get_logger()


class DispatchEngine:
    """订单生命周期与骑手指派引擎"""

    def __init__(
        self,
        stores: StoreGroup,
        config: EngineConfig | None = None,
        transport: NotificationTransport | None = None,
        analytics: AnalyticsAggregator | None = None,
    ) -> None:
        self._stores = stores
        self._config = config or EngineConfig()
        self._validator = TransitionValidator()
        self._writer = EventWriter(stores)
        self._coordinator = AssignmentCoordinator(
            stores,
            self._writer,
            self._validator,
            KeyedLocks(self._config.command_timeout_s),
        )
        self._dispatcher = NotificationDispatcher(
            stores, transport, delivery_timeout_s=self._config.delivery_timeout_s
        )
        self._analytics = analytics or AnalyticsAggregator()
        # 折叠失败后置位，下一次命令结束时从事件日志重建
        self._analytics_stale = False
        self._writer.add_commit_hook(self._fold_analytics)

    @classmethod
    async def open(
        cls,
        db_path: str | None = None,
        config: EngineConfig | None = None,
        transport: NotificationTransport | None = None,
    ) -> "DispatchEngine":
        """打开数据库，恢复统计断点并补记、补投遗漏的通知"""
        config = config or load_engine_config()
        stores = await create_store_group(
            db_path or get_db_path(),
            page_size=config.read_page_size,
            busy_timeout_ms=config.sqlite_busy_timeout_ms,
            lock_timeout_s=config.command_timeout_s,
        )
        analytics = await AnalyticsAggregator.load_checkpoint(stores)
        await analytics.catch_up(stores.event_store)
        engine = cls(stores, config, transport, analytics)

        dispatcher = engine.dispatcher
        await dispatcher.load_checkpoint()
        await dispatcher.catch_up(stores.event_reader)
        # 上次运行遗留的 pending 均已无人投递
        await dispatcher.redeliver_failed(pending_older_than_s=0)
        return engine

    async def close(self) -> None:
        """保存统计与通知断点并关闭连接"""
        await self.save_checkpoint()
        await self._stores.close()

    async def save_checkpoint(self) -> None:
        """持久化统计与通知断点；统计状态损坏且无法重建时不覆盖旧断点"""
        await self._refresh_analytics()
        if self._analytics_stale:
            log.warning("analytics_checkpoint_skipped", last_seq=self._analytics.last_seq)
        else:
            await self._analytics.save_checkpoint(self._stores)
        await self._dispatcher.save_checkpoint()

    @property
    def stores(self) -> StoreGroup:
        return self._stores

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    # ---- 命令 ----

    async def create_order(
        self,
        customer_ref: str,
        amount: Decimal | int | str,
        notes: str = "",
        actor_id: str = "",
    ) -> Order:
        """创建订单（agent 录单）

        Raises:
            pydantic.ValidationError: 金额非正或客户引用为空
        """
        payload = OrderCreatedPayload(customer_ref=customer_ref, amount=amount, notes=notes)
        order_id = str(ULID())

        async with self._coordinator.order_scope(order_id):
            event = self._writer.build_event(
                order_id,
                1,
                EventType.ORDER_CREATED,
                ActorRole.AGENT,
                payload.model_dump(mode="json"),
                actor_id=actor_id,
            )
            committed, order = await self._writer.commit(None, [event])

        await log.ainfo(
            "order_created",
            order_id=order_id,
            customer_ref=customer_ref,
            amount=str(order.amount),
        )
        await self._after_command(order, committed)
        return order

    async def update_status(
        self,
        order_id: str,
        requested_status: OrderStatus | str,
        actor_role: ActorRole | str,
        actor_id: str = "",
    ) -> Order:
        """请求状态流转

        进入 ASSIGNED 必须使用 assign_rider；离开持有状态时骑手槽位在同一事务内释放。

        Raises:
            NotFoundError: 订单不存在
            InvalidTransitionError: 流转不合法
            WriteFailedError: 写入失败
            EngineTimeoutError: 锁等待超时
        """
        requested = OrderStatus(requested_status)
        role = ActorRole(actor_role)

        with structlog.contextvars.bound_contextvars(trace_id=f"trace-{order_id}"):
            async with self._coordinator.order_scope(order_id):
                order = await self._coordinator.load_order(order_id)
                self._check_transition(order, requested, role, actor_id)

                releases = (
                    self._coordinator.releases_for(order)
                    if requested in TERMINAL_STATES
                    else []
                )
                riders = [rider_id for rider_id, _ in releases]
                async with self._coordinator.rider_scope(*riders):
                    event = self._status_event(order, requested, role, actor_id)
                    committed, updated = await self._writer.commit(
                        order, [event], releases=releases
                    )

            await log.ainfo(
                "order_status_changed",
                order_id=order_id,
                from_status=order.status.value,
                to_status=requested.value,
                actor_role=role.value,
                released_rider=riders[0] if riders else None,
            )

        await self._after_command(updated, committed)
        return updated

    async def assign_rider(
        self,
        order_id: str,
        rider_id: str,
        actor_role: ActorRole | str = ActorRole.AGENT,
        actor_id: str = "",
    ) -> Order:
        """指派骑手（CREATED -> ASSIGNED）

        Raises:
            NotFoundError / OrderNotAssignableError / RiderUnavailableError /
            InvalidTransitionError / WriteFailedError / EngineTimeoutError
        """
        role = ActorRole(actor_role)
        with structlog.contextvars.bound_contextvars(trace_id=f"trace-{order_id}"):
            try:
                committed, order = await self._coordinator.assign(
                    order_id, rider_id, role, actor_id
                )
            except (OrderNotAssignableError, RiderUnavailableError) as e:
                log.warning(
                    "assignment_rejected",
                    order_id=order_id,
                    rider_id=rider_id,
                    error_type=type(e).__name__,
                    reason=str(e),
                )
                raise
        await self._after_command(order, committed)
        return order

    async def reassign_rider(
        self,
        order_id: str,
        new_rider_id: str,
        expected_rider_id: str,
        actor_role: ActorRole | str = ActorRole.AGENT,
        actor_id: str = "",
    ) -> Order:
        """取货前改派骑手，expected_rider_id 必须等于当前骑手"""
        role = ActorRole(actor_role)
        with structlog.contextvars.bound_contextvars(trace_id=f"trace-{order_id}"):
            committed, order = await self._coordinator.reassign(
                order_id, new_rider_id, expected_rider_id, role, actor_id
            )
        await self._after_command(order, committed)
        return order

    async def confirm_delivery(
        self,
        order_id: str,
        proof: CompletionProof,
        actor_id: str = "",
    ) -> Order:
        """骑手确认送达：IN_TRANSIT -> DELIVERED，附签收凭证

        STATUS_CHANGED 与 DELIVERY_CONFIRMED 在同一事务内提交，并释放骑手槽位。
        已取消的订单确认送达会被拒绝（CANCELLED 是终态）。
        """
        with structlog.contextvars.bound_contextvars(trace_id=f"trace-{order_id}"):
            async with self._coordinator.order_scope(order_id):
                order = await self._coordinator.load_order(order_id)
                self._check_transition(order, OrderStatus.DELIVERED, ActorRole.RIDER, actor_id)

                releases = self._coordinator.releases_for(order)
                async with self._coordinator.rider_scope(*(r for r, _ in releases)):
                    status_event = self._status_event(
                        order, OrderStatus.DELIVERED, ActorRole.RIDER, actor_id
                    )
                    confirm_event = self._writer.build_event(
                        order_id,
                        order.latest_order_seq + 2,
                        EventType.DELIVERY_CONFIRMED,
                        ActorRole.RIDER,
                        DeliveryConfirmedPayload(
                            rider_id=order.rider_id or "",
                            customer_ref=order.customer_ref,
                            proof_kind=proof.kind,
                            proof_reference=proof.reference,
                        ).model_dump(mode="json"),
                        actor_id=actor_id,
                        ts=status_event.ts,
                    )
                    committed, updated = await self._writer.commit(
                        order, [status_event, confirm_event], releases=releases
                    )

            await log.ainfo(
                "delivery_confirmed",
                order_id=order_id,
                rider_id=order.rider_id,
                proof_kind=proof.kind.value,
            )

        await self._after_command(updated, committed)
        return updated

    async def register_rider(self, rider_id: str, available: bool = True) -> RiderAvailability:
        """登记骑手（来自外部骑手档案），已存在时仅更新在岗标记"""
        return await self._write_rider(rider_id, available)

    async def set_rider_availability(self, rider_id: str, available: bool) -> RiderAvailability:
        """更新骑手在岗标记；下线不影响其当前持有的订单

        Raises:
            NotFoundError: 骑手未登记
        """
        await self._coordinator.load_rider(rider_id)
        return await self._write_rider(rider_id, available)

    # ---- 查询（只读连接，不加锁） ----

    async def get_order(self, order_id: str) -> Order | None:
        return await self._stores.order_reader.get_order(order_id)

    async def list_orders(self, status: OrderStatus | str | None = None) -> list[Order]:
        return await self._stores.order_reader.list_orders(
            OrderStatus(status).value if status else None
        )

    async def get_rider(self, rider_id: str) -> RiderAvailability | None:
        return await self._stores.rider_reader.get_rider(rider_id)

    async def list_available_riders(self) -> list[RiderAvailability]:
        return await self._stores.rider_reader.list_riders(only_free=True)

    async def get_order_events(self, order_id: str, since_seq: int = 0) -> list[Event]:
        return [e async for e in self._stores.event_reader.read_from(order_id, since_seq)]

    async def list_notifications(self, order_id: str) -> list[NotificationIntent]:
        return await self._stores.notification_reader.list_for_order(order_id)

    def metrics(self) -> MetricsSnapshot:
        """统计快照（最终一致，非权威）"""
        return self._analytics.snapshot()

    # ---- 内部 ----

    def _check_transition(
        self,
        order: Order,
        requested: OrderStatus,
        role: ActorRole,
        actor_id: str,
    ) -> None:
        decision = self._validator.validate(order.status, requested, role)
        if decision.accepted and role == ActorRole.RIDER and actor_id and actor_id != order.rider_id:
            decision = decision.reject(
                order.status, requested, f"rider {actor_id} is not assigned to this order"
            )
        if not decision.accepted:
            log.warning(
                "transition_rejected",
                order_id=order.order_id,
                from_status=order.status.value,
                to_status=requested.value,
                actor_role=role.value,
                reason=decision.reason,
            )
        decision.raise_if_rejected()

    def _status_event(
        self,
        order: Order,
        requested: OrderStatus,
        role: ActorRole,
        actor_id: str,
    ) -> Event:
        return self._writer.build_event(
            order.order_id,
            order.latest_order_seq + 1,
            EventType.STATUS_CHANGED,
            role,
            StatusChangedPayload(
                from_status=order.status,
                to_status=requested,
                customer_ref=order.customer_ref,
                rider_id=order.rider_id,
            ).model_dump(mode="json"),
            actor_id=actor_id,
        )

    async def _write_rider(self, rider_id: str, available: bool) -> RiderAvailability:
        stores = self._stores
        async with self._coordinator.rider_scope(rider_id):
            async with stores.write_scope():
                try:
                    await stores.rider_store.upsert_rider(rider_id, available, datetime.now(UTC))
                    await stores.conn.commit()
                except BaseException:
                    await stores.conn.rollback()
                    raise
            rider = await stores.rider_reader.get_rider(rider_id)
        await log.ainfo("rider_availability_set", rider_id=rider_id, available=available)
        if rider is None:
            raise NotFoundError("Rider", rider_id)
        return rider

    async def _after_command(self, order: Order, committed: list[Event]) -> None:
        if order.status in TERMINAL_STATES:
            await self._coordinator.release_order_lock(order.order_id)
        await self._refresh_analytics()
        await self._publish(committed)

    def _fold_analytics(self, event: Event) -> None:
        """提交钩子：在 write_lock 内按 seq 顺序折叠统计"""
        if self._analytics_stale:
            return
        try:
            self._analytics.on_event(event)
        except Exception as e:
            self._analytics_stale = True
            log.error(
                "analytics_fold_failed",
                seq=event.seq,
                event_id=event.event_id,
                order_id=event.order_id,
                event_type=event.type.value,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def _refresh_analytics(self) -> None:
        """统计折叠失败后，从事件日志重建聚合器并替换"""
        if not self._analytics_stale:
            return
        stores = self._stores
        try:
            fresh = await AnalyticsAggregator.rebuild(stores.event_reader)
            # 持锁补齐重建期间新提交的事件，替换期间没有新的提交
            async with stores.write_scope():
                await fresh.catch_up(stores.event_reader)
                self._analytics = fresh
                self._analytics_stale = False
        except Exception as e:
            log.error("analytics_rebuild_failed", error_type=type(e).__name__, error=str(e))
            return
        await log.ainfo("analytics_rebuilt", last_seq=fresh.last_seq)

    async def _publish(self, committed: list[Event]) -> None:
        """分发通知；异常只记录，不向调用方传播"""
        for event in committed:
            try:
                await self._dispatcher.on_event(event)
            except Exception as e:
                log.error(
                    "notification_dispatch_failed",
                    event_id=event.event_id,
                    order_id=event.order_id,
                    error_type=type(e).__name__,
                )
