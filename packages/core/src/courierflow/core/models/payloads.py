"""Event Payload 子类型

所有事件的结构化 payload 定义。
payload 自包含下游所需的上下文（customer_ref / rider_id），
通知与统计模块只消费事件本身，不回查订单状态。
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import OrderStatus, ProofKind


class OrderCreatedPayload(BaseModel):
    """ORDER_CREATED 事件 payload"""

    customer_ref: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    notes: str = Field(default="")


class StatusChangedPayload(BaseModel):
    """STATUS_CHANGED 事件 payload"""

    from_status: OrderStatus
    to_status: OrderStatus
    customer_ref: str
    rider_id: str | None = Field(default=None, description="流转时持有订单的骑手")
    reason: str = Field(default="")


class RiderAssignedPayload(BaseModel):
    """RIDER_ASSIGNED 事件 payload"""

    rider_id: str
    customer_ref: str
    previous_rider_id: str | None = Field(
        default=None,
        description="改派时被替换的骑手，首次指派为 None",
    )


class DeliveryConfirmedPayload(BaseModel):
    """DELIVERY_CONFIRMED 事件 payload"""

    rider_id: str
    customer_ref: str
    proof_kind: ProofKind
    proof_reference: str
