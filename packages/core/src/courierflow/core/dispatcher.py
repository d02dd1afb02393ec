"""NotificationDispatcher -- 已提交事件 -> 通知意图

映射规则：
- STATUS_CHANGED -> ASSIGNED：骑手收到 ORDER_ASSIGNED，客户收到 STATUS_UPDATE
- STATUS_CHANGED -> 其它状态：客户收到 STATUS_UPDATE；
  持有骑手的订单被取消时，骑手另收到 ORDER_CANCELLED
- RIDER_ASSIGNED（改派）：新骑手收到 ORDER_ASSIGNED，原骑手收到 ORDER_REASSIGNED
- DELIVERY_CONFIRMED：客户与骑手都收到 DELIVERY_CONFIRMED
- ORDER_CREATED / 首次 RIDER_ASSIGNED：不产生通知

按事件 ID 去重：同一事件重复进入 on_event 不会再次产生通知。
单次投递受 delivery_timeout_s 约束；失败或超时只记录日志并标记 failed，不影响已提交的事件。
断点 last_seq 记录连续处理到的事件，重启后 catch_up 补记遗漏的通知。
"""

import asyncio
from datetime import UTC, datetime, timedelta

import structlog
from ulid import ULID

from .models.enums import EventType, NotificationKind, OrderStatus, RecipientRole
from .models.event import Event
from .models.notification import NotificationIntent
from .store import StoreGroup
from .store.protocols import EventStore, NotificationTransport

log = structlog.get_logger()

CHECKPOINT_NAME = "notifications"


class NotificationDispatcher:
    """通知分发器"""

    def __init__(
        self,
        stores: StoreGroup,
        transport: NotificationTransport | None = None,
        delivery_timeout_s: float = 2.0,
    ) -> None:
        self._stores = stores
        self._transport = transport
        self._delivery_timeout_s = delivery_timeout_s
        self.last_seq = 0
        self._processed: set[int] = set()

    @staticmethod
    def build_intents(event: Event) -> list[NotificationIntent]:
        """根据事件计算通知意图（纯函数）"""
        payload = event.payload

        def intent(
            role: RecipientRole, recipient_id: str, kind: NotificationKind
        ) -> NotificationIntent:
            return NotificationIntent(
                intent_id=str(ULID()),
                event_id=event.event_id,
                recipient_role=role,
                recipient_id=recipient_id,
                order_id=event.order_id,
                kind=kind,
                payload={
                    "event_type": event.type.value,
                    "ts": event.ts.isoformat(),
                    **payload,
                },
            )

        intents: list[NotificationIntent] = []

        if event.type == EventType.STATUS_CHANGED:
            to_status = OrderStatus(payload["to_status"])
            rider_id = payload.get("rider_id")
            if to_status == OrderStatus.ASSIGNED and rider_id:
                intents.append(intent(RecipientRole.RIDER, rider_id, NotificationKind.ORDER_ASSIGNED))
            elif to_status == OrderStatus.CANCELLED and rider_id:
                intents.append(
                    intent(RecipientRole.RIDER, rider_id, NotificationKind.ORDER_CANCELLED)
                )
            intents.append(
                intent(
                    RecipientRole.CUSTOMER,
                    payload["customer_ref"],
                    NotificationKind.STATUS_UPDATE,
                )
            )

        elif event.type == EventType.RIDER_ASSIGNED and payload.get("previous_rider_id"):
            intents.append(
                intent(RecipientRole.RIDER, payload["rider_id"], NotificationKind.ORDER_ASSIGNED)
            )
            intents.append(
                intent(
                    RecipientRole.RIDER,
                    payload["previous_rider_id"],
                    NotificationKind.ORDER_REASSIGNED,
                )
            )

        elif event.type == EventType.DELIVERY_CONFIRMED:
            intents.append(
                intent(
                    RecipientRole.CUSTOMER,
                    payload["customer_ref"],
                    NotificationKind.DELIVERY_CONFIRMED,
                )
            )
            intents.append(
                intent(RecipientRole.RIDER, payload["rider_id"], NotificationKind.DELIVERY_CONFIRMED)
            )

        return intents

    async def on_event(self, event: Event) -> list[NotificationIntent]:
        """处理一个已提交事件

        Returns:
            本次新产生并尝试投递的通知意图；重复事件返回空列表
        """
        intents = self.build_intents(event)
        if not intents:
            self._mark_processed(event.seq)
            return []

        fresh = await self._record(intents)
        self._mark_processed(event.seq)
        if len(fresh) < len(intents):
            log.debug(
                "notification_duplicates_skipped",
                event_id=event.event_id,
                skipped=len(intents) - len(fresh),
            )

        for item in fresh:
            await self._deliver(item)
        return fresh

    async def catch_up(self, event_store: EventStore) -> int:
        """从断点之后续读事件日志，补记崩溃或记录失败时漏掉的通知

        已记录过的事件由唯一索引去重，重复处理不会重复投递。

        Returns:
            本次新记录的通知数
        """
        recorded = 0
        async for event in event_store.read_all_from(self.last_seq):
            recorded += len(await self.on_event(event))
        if recorded:
            log.info("notifications_caught_up", recorded=recorded, last_seq=self.last_seq)
        return recorded

    async def redeliver_failed(self, pending_older_than_s: float | None = None) -> int:
        """重新投递 failed 的通知（至少一次语义）

        Args:
            pending_older_than_s: 同时补投停留在 pending 超过该秒数的通知
                （投递途中调用方被取消或进程退出）；None 表示只补投 failed

        Returns:
            本次投递成功的数量
        """
        pending_before = None
        if pending_older_than_s is not None:
            pending_before = datetime.now(UTC) - timedelta(seconds=pending_older_than_s)
        undelivered = await self._stores.notification_reader.list_undelivered(pending_before)

        delivered = 0
        for item in undelivered:
            if await self._deliver(item):
                delivered += 1
        if undelivered:
            log.info(
                "notifications_redelivered",
                attempted=len(undelivered),
                delivered=delivered,
            )
        return delivered

    async def load_checkpoint(self) -> None:
        saved = await self._stores.checkpoint_store.load(CHECKPOINT_NAME)
        if saved is not None:
            self.last_seq = saved[0]
            self._processed.clear()

    async def save_checkpoint(self) -> None:
        """持久化连续处理到的最大 seq"""
        stores = self._stores
        async with stores.write_scope():
            try:
                await stores.checkpoint_store.save(
                    CHECKPOINT_NAME, self.last_seq, {}, datetime.now(UTC)
                )
                await stores.conn.commit()
            except BaseException:
                await stores.conn.rollback()
                raise

    def _mark_processed(self, seq: int) -> None:
        # 实时事件乱序到达，last_seq 只推进到连续已记录的位置
        if seq <= self.last_seq:
            return
        self._processed.add(seq)
        while self.last_seq + 1 in self._processed:
            self.last_seq += 1
            self._processed.remove(self.last_seq)

    async def _record(self, intents: list[NotificationIntent]) -> list[NotificationIntent]:
        now = datetime.now(UTC)
        stores = self._stores
        async with stores.write_scope():
            try:
                fresh = [
                    item
                    for item in intents
                    if await stores.notification_store.record_intent(item, now)
                ]
                await stores.conn.commit()
            except BaseException:
                await stores.conn.rollback()
                raise
        return fresh

    async def _send(
        self, transport: NotificationTransport, intent: NotificationIntent
    ) -> str | None:
        """调用通道发送，返回失败原因；成功返回 None"""
        try:
            async with asyncio.timeout(self._delivery_timeout_s):
                await transport.send(intent)
        except TimeoutError:
            return f"transport did not answer within {self._delivery_timeout_s}s"
        except Exception as e:
            return f"{type(e).__name__}: {e}"
        return None

    async def _deliver(self, intent: NotificationIntent) -> bool:
        if self._transport is None:
            return False

        error = await self._send(self._transport, intent)
        if error is not None:
            log.warning(
                "notification_delivery_failed",
                intent_id=intent.intent_id,
                event_id=intent.event_id,
                recipient_role=intent.recipient_role.value,
                kind=intent.kind.value,
                error=error,
            )

        now = datetime.now(UTC)
        stores = self._stores
        async with stores.write_scope():
            try:
                if error is None:
                    await stores.notification_store.mark_delivered(intent.intent_id, now)
                else:
                    await stores.notification_store.mark_failed(intent.intent_id, error, now)
                await stores.conn.commit()
            except BaseException:
                await stores.conn.rollback()
                raise
        return error is None
