"""并发指派集成测试

多个订单同时争抢少量骑手：每个骑手最多持有一个订单，每个订单最多一次成功指派。
"""

import asyncio
import itertools

from courierflow.core.engine import DispatchEngine
from courierflow.core.exceptions import (
    EngineError,
    OrderNotAssignableError,
    RiderUnavailableError,
)
from courierflow.core.models import ActorRole, EventType, OrderStatus


async def _try_assign(engine: DispatchEngine, order_id: str, rider_id: str) -> str | None:
    try:
        await engine.assign_rider(order_id, rider_id, ActorRole.AGENT)
    except (OrderNotAssignableError, RiderUnavailableError):
        return None
    return rider_id


class TestConcurrentAssignment:
    async def test_no_double_booking(self, live_engine: DispatchEngine, riders: list[str]):
        orders = [await live_engine.create_order(f"cust-{i}", "10.00") for i in range(6)]

        attempts = [
            _try_assign(live_engine, order.order_id, rider_id)
            for order, rider_id in itertools.product(orders, riders)
        ]
        await asyncio.gather(*attempts)

        # 每个骑手最多一个订单，且槽位与订单 projection 一致
        held: dict[str, str] = {}
        for rider_id in riders:
            rider = await live_engine.get_rider(rider_id)
            assert rider.current_order_id is not None
            held[rider_id] = rider.current_order_id
        assert len(set(held.values())) == len(riders)

        assigned = await live_engine.list_orders(OrderStatus.ASSIGNED)
        assert len(assigned) == len(riders)
        for order in assigned:
            assert held[order.rider_id] == order.order_id

            events = await live_engine.get_order_events(order.order_id)
            assert [e.type for e in events].count(EventType.RIDER_ASSIGNED) == 1

        assert len(await live_engine.list_orders(OrderStatus.CREATED)) == 2

    async def test_same_order_many_riders(self, live_engine: DispatchEngine, riders: list[str]):
        order = await live_engine.create_order("cust-1", "10.00")

        results = await asyncio.gather(
            *(_try_assign(live_engine, order.order_id, r) for r in riders)
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        final = await live_engine.get_order(order.order_id)
        assert final.rider_id == winners[0]
        free = {r.rider_id for r in await live_engine.list_available_riders()}
        assert free == set(riders) - {winners[0]}

    async def test_cancel_races_with_assign(
        self, live_engine: DispatchEngine, riders: list[str]
    ):
        """取消与指派并发：结果一致，骑手不被孤立占用"""
        orders = [await live_engine.create_order(f"cust-{i}", "3.00") for i in range(4)]

        async def cancel(order_id: str) -> None:
            try:
                await live_engine.update_status(order_id, OrderStatus.CANCELLED, ActorRole.AGENT)
            except EngineError:
                pass

        await asyncio.gather(
            *(_try_assign(live_engine, o.order_id, riders[i]) for i, o in enumerate(orders)),
            *(cancel(o.order_id) for o in orders),
        )

        for i, order in enumerate(orders):
            final = await live_engine.get_order(order.order_id)
            assert final.status == OrderStatus.CANCELLED
            rider = await live_engine.get_rider(riders[i])
            assert rider.current_order_id is None

    async def test_orders_progress_independently(
        self, live_engine: DispatchEngine, riders: list[str]
    ):
        orders = [await live_engine.create_order(f"cust-{i}", "8.00") for i in range(4)]
        for order, rider_id in zip(orders, riders):
            await live_engine.assign_rider(order.order_id, rider_id)

        async def run(order_id: str, rider_id: str) -> None:
            for status in (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED):
                await live_engine.update_status(order_id, status, ActorRole.RIDER, rider_id)

        await asyncio.gather(*(run(o.order_id, r) for o, r in zip(orders, riders)))

        for order in orders:
            events = await live_engine.get_order_events(order.order_id)
            assert [e.order_seq for e in events] == list(range(1, 7))
        assert len(await live_engine.list_available_riders()) == len(riders)
        assert live_engine.metrics().count_by_status == {"DELIVERED": 4}
