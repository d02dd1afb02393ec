"""重放一致性集成测试

从事件日志全量重放得到的订单状态与统计指标，必须与在线结果逐字段一致。
"""

from courierflow.core.analytics import AnalyticsAggregator
from courierflow.core.engine import DispatchEngine
from courierflow.core.models import ActorRole, CompletionProof, OrderStatus, ProofKind
from courierflow.core.projection import rebuild_all, replay_orders


async def _mixed_workload(engine: DispatchEngine) -> None:
    """交错执行：送达、取货后取消、改派、未指派取消、挂起"""
    o1 = await engine.create_order("cust-1", "12.34")
    o2 = await engine.create_order("cust-2", "20.00")
    o3 = await engine.create_order("cust-3", "7.77")
    o4 = await engine.create_order("cust-4", "1.01")
    o5 = await engine.create_order("cust-5", "99.99")

    await engine.assign_rider(o1.order_id, "rider-1")
    await engine.assign_rider(o2.order_id, "rider-2")
    await engine.update_status(o1.order_id, OrderStatus.PICKED_UP, ActorRole.RIDER, "rider-1")
    await engine.assign_rider(o3.order_id, "rider-3")
    await engine.reassign_rider(o3.order_id, "rider-4", expected_rider_id="rider-3")
    await engine.update_status(o2.order_id, OrderStatus.PICKED_UP, ActorRole.RIDER, "rider-2")
    await engine.update_status(o1.order_id, OrderStatus.IN_TRANSIT, ActorRole.RIDER, "rider-1")
    await engine.update_status(o4.order_id, OrderStatus.CANCELLED, ActorRole.AGENT)
    await engine.update_status(o2.order_id, OrderStatus.CANCELLED, ActorRole.SYSTEM)
    await engine.confirm_delivery(
        o1.order_id, CompletionProof(kind=ProofKind.SIGNATURE, reference="sig-1"), "rider-1"
    )
    await engine.assign_rider(o5.order_id, "rider-1")


class TestReplay:
    async def test_order_state_matches_replay(
        self, live_engine: DispatchEngine, riders: list[str]
    ):
        await _mixed_workload(live_engine)

        live = {o.order_id: o for o in await live_engine.list_orders()}
        replayed = await replay_orders(live_engine.stores)
        assert replayed == live

    async def test_metrics_match_replay(self, live_engine: DispatchEngine, riders: list[str]):
        await _mixed_workload(live_engine)

        rebuilt = await AnalyticsAggregator.rebuild(live_engine.stores.event_reader)
        assert rebuilt.snapshot() == live_engine.metrics()

        snap = live_engine.metrics()
        assert snap.count_by_status == {"ASSIGNED": 2, "CANCELLED": 2, "DELIVERED": 1}
        assert str(snap.completed_revenue) == "12.34"
        assert snap.fulfillment_rate == 1 / 3

    async def test_rebuild_restores_slots(self, live_engine: DispatchEngine, riders: list[str]):
        """rebuild 后骑手槽位与在线状态一致"""
        await _mixed_workload(live_engine)
        before = {r: (await live_engine.get_rider(r)).current_order_id for r in riders}
        orders_before = await live_engine.list_orders()

        await rebuild_all(live_engine.stores)

        after = {r: (await live_engine.get_rider(r)).current_order_id for r in riders}
        assert after == before
        assert await live_engine.list_orders() == orders_before

    async def test_restart_with_stale_checkpoint(
        self, live_engine: DispatchEngine, riders: list[str], integration_db: str
    ):
        await live_engine.save_checkpoint()
        await _mixed_workload(live_engine)
        expected = live_engine.metrics()

        reopened = await DispatchEngine.open(integration_db)
        try:
            assert reopened.metrics() == expected
        finally:
            await reopened.stores.close()
