"""TransitionValidator -- 订单状态机校验（纯函数，不访问存储）

规则（按顺序检查）：
1. 终态不可再流转
2. 目标状态必须在合法边集内（不可跳跃、回退或原地流转）
3. 进入 ASSIGNED 必须在同一命令中携带骑手
4. 进入 ASSIGNED、以及派送前取消，只能由 agent 发起；
   取货后取消可由 agent 或 system 发起，骑手不可取消
5. 取货、在途、送达只能由 rider 发起
"""

from pydantic import BaseModel, Field

from .exceptions import InvalidTransitionError
from .models.enums import (
    PRE_DISPATCH_STATES,
    TERMINAL_STATES,
    ActorRole,
    OrderStatus,
    validate_transition,
)

# 只能由骑手推进的目标状态
_RIDER_DRIVEN: set[OrderStatus] = {
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
}


class TransitionDecision(BaseModel):
    """校验结果：Accept 或 Reject(reason)"""

    accepted: bool
    current: OrderStatus
    requested: OrderStatus
    reason: str = Field(default="")

    @classmethod
    def accept(cls, current: OrderStatus, requested: OrderStatus) -> "TransitionDecision":
        return cls(accepted=True, current=current, requested=requested)

    @classmethod
    def reject(
        cls, current: OrderStatus, requested: OrderStatus, reason: str
    ) -> "TransitionDecision":
        return cls(accepted=False, current=current, requested=requested, reason=reason)

    def raise_if_rejected(self) -> None:
        """Reject 时抛出 InvalidTransitionError"""
        if not self.accepted:
            raise InvalidTransitionError(self.current.value, self.requested.value, self.reason)


class TransitionValidator:
    """订单状态流转校验器"""

    def validate(
        self,
        current: OrderStatus,
        requested: OrderStatus,
        actor_role: ActorRole,
        rider_id: str | None = None,
    ) -> TransitionDecision:
        """校验一次状态流转请求

        Args:
            current: 当前状态
            requested: 目标状态
            actor_role: 发起者角色
            rider_id: 同一命令中携带的骑手（仅进入 ASSIGNED 时需要）

        Returns:
            TransitionDecision
        """
        if current in TERMINAL_STATES:
            return TransitionDecision.reject(
                current, requested, f"{current.value} is terminal"
            )

        if not validate_transition(current, requested):
            return TransitionDecision.reject(
                current, requested, "not an edge of the order lifecycle"
            )

        if requested == OrderStatus.ASSIGNED:
            if not rider_id:
                return TransitionDecision.reject(
                    current, requested, "assignment requires a rider in the same command"
                )
            if actor_role != ActorRole.AGENT:
                return TransitionDecision.reject(
                    current, requested, "only an agent may assign a rider"
                )

        elif requested == OrderStatus.CANCELLED:
            if current in PRE_DISPATCH_STATES:
                if actor_role != ActorRole.AGENT:
                    return TransitionDecision.reject(
                        current, requested, "only an agent may cancel before pickup"
                    )
            elif actor_role == ActorRole.RIDER:
                return TransitionDecision.reject(
                    current, requested, "a rider may not cancel an order"
                )

        elif requested in _RIDER_DRIVEN and actor_role != ActorRole.RIDER:
            return TransitionDecision.reject(
                current, requested, f"only a rider may move an order to {requested.value}"
            )

        return TransitionDecision.accept(current, requested)
