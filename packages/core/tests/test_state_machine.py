"""状态机流转单元测试

测试内容：
1. 合法流转通过
2. 跳跃、回退、原地流转被拒绝
3. 终态不可再流转
"""

import pytest
from courierflow.core.models.enums import (
    RIDER_HOLDING_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
    validate_transition,
)


class TestStateMachineTransitions:
    """状态机流转验证"""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (OrderStatus.CREATED, OrderStatus.ASSIGNED),
            (OrderStatus.CREATED, OrderStatus.CANCELLED),
            (OrderStatus.ASSIGNED, OrderStatus.PICKED_UP),
            (OrderStatus.ASSIGNED, OrderStatus.CANCELLED),
            (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT),
            (OrderStatus.PICKED_UP, OrderStatus.CANCELLED),
            (OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED),
            (OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED),
        ],
    )
    def test_valid_transition(self, from_status: OrderStatus, to_status: OrderStatus):
        """合法流转应通过验证"""
        assert validate_transition(from_status, to_status) is True

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (OrderStatus.CREATED, OrderStatus.PICKED_UP),
            (OrderStatus.CREATED, OrderStatus.DELIVERED),
            (OrderStatus.CREATED, OrderStatus.CREATED),
            (OrderStatus.ASSIGNED, OrderStatus.CREATED),
            (OrderStatus.ASSIGNED, OrderStatus.IN_TRANSIT),
            (OrderStatus.PICKED_UP, OrderStatus.ASSIGNED),
            (OrderStatus.IN_TRANSIT, OrderStatus.PICKED_UP),
            (OrderStatus.IN_TRANSIT, OrderStatus.IN_TRANSIT),
        ],
    )
    def test_invalid_transition(self, from_status: OrderStatus, to_status: OrderStatus):
        """非法流转应被拒绝"""
        assert validate_transition(from_status, to_status) is False

    def test_all_terminal_states_cannot_transition(self):
        """所有终态都不能再流转"""
        for terminal in TERMINAL_STATES:
            for target in OrderStatus:
                assert validate_transition(terminal, target) is False, (
                    f"终态 {terminal} 不应能流转到 {target}"
                )

    def test_valid_transitions_completeness(self):
        """VALID_TRANSITIONS 覆盖所有状态"""
        for state in OrderStatus:
            assert state in VALID_TRANSITIONS, f"{state} 未在 VALID_TRANSITIONS 中定义"

    def test_every_active_state_can_cancel(self):
        for state in OrderStatus:
            if state not in TERMINAL_STATES:
                assert OrderStatus.CANCELLED in VALID_TRANSITIONS[state]

    def test_created_does_not_hold_rider(self):
        assert OrderStatus.CREATED not in RIDER_HOLDING_STATES
        assert OrderStatus.CANCELLED not in RIDER_HOLDING_STATES
