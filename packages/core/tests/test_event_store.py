"""EventStore 单元测试

测试内容：
1. 全局 seq 严格递增且连续
2. order_seq 唯一约束
3. read_from / read_all_from 分页读取与断点续读
"""

import pytest
from courierflow.core.exceptions import WriteFailedError
from courierflow.core.models import EventType, OrderStatus
from courierflow.core.store import StoreGroup, append_events


def _created(customer_ref: str = "cust-1") -> dict:
    return {"customer_ref": customer_ref, "amount": "10.00", "notes": ""}


def _status(from_status: OrderStatus, to_status: OrderStatus) -> dict:
    return {
        "from_status": from_status.value,
        "to_status": to_status.value,
        "customer_ref": "cust-1",
        "rider_id": None,
        "reason": "",
    }


class TestEventSeq:
    """全局序号与订单内序号"""

    async def test_seq_assigned_on_append(self, store_group: StoreGroup, make_event):
        events = [
            make_event("o1", 1, EventType.ORDER_CREATED, _created()),
            make_event("o2", 1, EventType.ORDER_CREATED, _created()),
            make_event(
                "o1", 2, EventType.STATUS_CHANGED, _status(OrderStatus.CREATED, OrderStatus.CANCELLED)
            ),
        ]
        committed = await append_events(store_group.conn, store_group.event_store, events)

        assert [e.seq for e in committed] == [1, 2, 3]
        assert all(e.committed for e in committed)
        assert await store_group.event_reader.get_last_seq() == 3

    async def test_duplicate_order_seq_rejected(self, store_group: StoreGroup, make_event):
        """同一订单重复 order_seq 触发唯一约束，整批回滚"""
        await append_events(
            store_group.conn,
            store_group.event_store,
            [make_event("o1", 1, EventType.ORDER_CREATED, _created())],
        )

        with pytest.raises(WriteFailedError):
            await append_events(
                store_group.conn,
                store_group.event_store,
                [
                    make_event("o2", 1, EventType.ORDER_CREATED, _created()),
                    make_event("o1", 1, EventType.ORDER_CREATED, _created()),
                ],
            )

        all_events = await store_group.event_reader.get_all_events()
        assert [e.order_id for e in all_events] == ["o1"]

    async def test_seq_contiguous_after_rollback(self, store_group: StoreGroup, make_event):
        """回滚的事务不在 seq 中留下空洞"""
        await append_events(
            store_group.conn,
            store_group.event_store,
            [make_event("o1", 1, EventType.ORDER_CREATED, _created())],
        )
        with pytest.raises(WriteFailedError):
            await append_events(
                store_group.conn,
                store_group.event_store,
                [make_event("o1", 1, EventType.ORDER_CREATED, _created())],
            )
        committed = await append_events(
            store_group.conn,
            store_group.event_store,
            [make_event("o2", 1, EventType.ORDER_CREATED, _created())],
        )
        assert committed[0].seq == 2

    async def test_next_order_seq(self, store_group: StoreGroup, make_event):
        assert await store_group.event_reader.get_next_order_seq("o1") == 1
        await append_events(
            store_group.conn,
            store_group.event_store,
            [make_event("o1", 1, EventType.ORDER_CREATED, _created())],
        )
        assert await store_group.event_reader.get_next_order_seq("o1") == 2


class TestPagedReads:
    """分页读取（fixture 页大小为 3）"""

    async def _seed(self, store_group: StoreGroup, make_event, count: int) -> None:
        events = [make_event("o1", 1, EventType.ORDER_CREATED, _created())]
        statuses = [
            OrderStatus.CREATED,
            OrderStatus.ASSIGNED,
            OrderStatus.PICKED_UP,
            OrderStatus.IN_TRANSIT,
            OrderStatus.DELIVERED,
        ]
        for i in range(1, count):
            events.append(
                make_event(
                    "o1",
                    i + 1,
                    EventType.STATUS_CHANGED,
                    _status(statuses[(i - 1) % 4], statuses[(i - 1) % 4 + 1]),
                )
            )
            events.append(make_event(f"other-{i}", 1, EventType.ORDER_CREATED, _created()))
        await append_events(store_group.conn, store_group.event_store, events)

    async def test_read_from_crosses_pages(self, store_group: StoreGroup, make_event):
        await self._seed(store_group, make_event, 8)

        events = [e async for e in store_group.event_reader.read_from("o1")]
        assert [e.order_seq for e in events] == list(range(1, 9))
        assert all(e.order_id == "o1" for e in events)

    async def test_read_from_resumes(self, store_group: StoreGroup, make_event):
        """中断后以最后一个 order_seq 续读，结果与一次读完一致"""
        await self._seed(store_group, make_event, 7)

        first: list = []
        async for event in store_group.event_reader.read_from("o1"):
            first.append(event)
            if len(first) == 4:
                break
        rest = [e async for e in store_group.event_reader.read_from("o1", first[-1].order_seq)]

        full = await store_group.event_reader.get_events_for_order("o1")
        assert [e.event_id for e in first + rest] == [e.event_id for e in full]

    async def test_read_from_unknown_order_is_empty(self, store_group: StoreGroup):
        assert [e async for e in store_group.event_reader.read_from("missing")] == []

    async def test_read_all_from_since(self, store_group: StoreGroup, make_event):
        await self._seed(store_group, make_event, 4)
        last_seq = await store_group.event_reader.get_last_seq()

        tail = [e async for e in store_group.event_reader.read_all_from(2)]
        assert [e.seq for e in tail] == list(range(3, last_seq + 1))

    async def test_payload_round_trip(self, store_group: StoreGroup, make_event):
        await append_events(
            store_group.conn,
            store_group.event_store,
            [make_event("o1", 1, EventType.ORDER_CREATED, _created("客户-甲"))],
        )
        (event,) = await store_group.event_reader.get_events_for_order("o1")
        assert event.payload["customer_ref"] == "客户-甲"
        assert event.payload["amount"] == "10.00"
        assert event.type == EventType.ORDER_CREATED
        assert event.ts.tzinfo is not None
