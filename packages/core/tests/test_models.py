"""Domain Models 单元测试

测试内容：
1. 枚举序列化/反序列化
2. Pydantic 模型校验
3. payload 的 JSON 形态（金额以字符串保存）
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from courierflow.core.models import (
    ActorRole,
    CompletionProof,
    Event,
    EventType,
    Order,
    OrderCreatedPayload,
    OrderStatus,
    ProofKind,
    RiderAssignedPayload,
    RiderAvailability,
    StatusChangedPayload,
)
from pydantic import ValidationError


class TestEnums:
    """枚举序列化/反序列化测试"""

    def test_order_status_values(self):
        assert OrderStatus.CREATED == "CREATED"
        assert OrderStatus.IN_TRANSIT == "IN_TRANSIT"
        assert OrderStatus("PICKED_UP") == OrderStatus.PICKED_UP

    def test_actor_role_values(self):
        assert ActorRole("rider") == ActorRole.RIDER
        assert ActorRole.SYSTEM == "system"

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            OrderStatus("LOST")


class TestOrderModel:
    """Order 模型校验"""

    def _order(self, **kwargs) -> Order:
        now = datetime.now(UTC)
        fields = {
            "order_id": "01JORDER0000000000000001",
            "customer_ref": "cust-1",
            "amount": Decimal("12.00"),
            "created_at": now,
            "updated_at": now,
        }
        fields.update(kwargs)
        return Order(**fields)

    def test_defaults(self):
        order = self._order()
        assert order.status == OrderStatus.CREATED
        assert order.rider_id is None
        assert order.proof is None
        assert order.status_history == []

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.50")])
    def test_non_positive_amount_rejected(self, amount: Decimal):
        with pytest.raises(ValidationError):
            self._order(amount=amount)

    def test_empty_customer_ref_rejected(self):
        with pytest.raises(ValidationError):
            self._order(customer_ref="")

    def test_occupies_rider(self):
        assert self._order(status=OrderStatus.ASSIGNED, rider_id="r1").occupies_rider
        assert self._order(status=OrderStatus.IN_TRANSIT, rider_id="r1").occupies_rider
        # 送达 / 取消后保留 rider_id 作为历史，但不再占用槽位
        assert not self._order(status=OrderStatus.DELIVERED, rider_id="r1").occupies_rider
        assert not self._order(status=OrderStatus.CANCELLED, rider_id="r1").occupies_rider
        assert not self._order(status=OrderStatus.CREATED).occupies_rider


class TestPayloads:
    def test_amount_serialized_as_string(self):
        payload = OrderCreatedPayload(customer_ref="c", amount=Decimal("19.99"))
        dumped = payload.model_dump(mode="json")
        assert dumped["amount"] == "19.99"
        assert Decimal(dumped["amount"]) == Decimal("19.99")

    def test_order_created_rejects_zero_amount(self):
        with pytest.raises(ValidationError):
            OrderCreatedPayload(customer_ref="c", amount=0)

    def test_status_changed_enum_values(self):
        dumped = StatusChangedPayload(
            from_status=OrderStatus.CREATED,
            to_status=OrderStatus.CANCELLED,
            customer_ref="c",
        ).model_dump(mode="json")
        assert dumped["from_status"] == "CREATED"
        assert dumped["to_status"] == "CANCELLED"
        assert dumped["rider_id"] is None

    def test_first_assignment_has_no_previous_rider(self):
        payload = RiderAssignedPayload(rider_id="r1", customer_ref="c")
        assert payload.previous_rider_id is None


class TestMisc:
    def test_event_committed_flag(self):
        event = Event(
            event_id="01JEVT",
            order_id="o1",
            order_seq=1,
            ts=datetime.now(UTC),
            type=EventType.ORDER_CREATED,
            actor_role=ActorRole.AGENT,
            trace_id="trace-o1",
        )
        assert event.committed is False
        assert event.model_copy(update={"seq": 7}).committed is True

    def test_proof_reference_required(self):
        with pytest.raises(ValidationError):
            CompletionProof(kind=ProofKind.SIGNATURE, reference="")

    def test_rider_can_accept(self):
        now = datetime.now(UTC)
        assert RiderAvailability(rider_id="r1", updated_at=now).can_accept
        assert not RiderAvailability(rider_id="r1", available=False, updated_at=now).can_accept
        assert not RiderAvailability(
            rider_id="r1", current_order_id="o1", updated_at=now
        ).can_accept
