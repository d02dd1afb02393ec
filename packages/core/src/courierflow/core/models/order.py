"""Order Domain Model

orders 表是 events 的物化视图（projection），
所有状态更新必须通过写入事件触发。
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import RIDER_HOLDING_STATES, ActorRole, OrderStatus, ProofKind


class StatusChange(BaseModel):
    """单次状态变更记录"""

    status: OrderStatus
    at: datetime
    actor_role: ActorRole
    actor_id: str = Field(default="")


class CompletionProof(BaseModel):
    """签收凭证：签名、照片或取件码的引用"""

    kind: ProofKind
    reference: str = Field(min_length=1, description="凭证引用（存储 key / 签收码）")


class Order(BaseModel):
    """Order 数据模型

    orders 表是 events 的物化视图（projection），
    所有状态更新必须通过写入事件触发。
    """

    order_id: str = Field(description="唯一标识，ULID 格式")
    customer_ref: str = Field(min_length=1, description="客户引用")
    amount: Decimal = Field(gt=0, description="订单金额")
    status: OrderStatus = Field(default=OrderStatus.CREATED, description="当前状态")
    rider_id: str | None = Field(default=None, description="已指派骑手")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    status_history: list[StatusChange] = Field(default_factory=list)
    proof: CompletionProof | None = Field(default=None, description="签收凭证")
    notes: str = Field(default="", description="下单备注")
    latest_seq: int = Field(default=0, description="最新事件全局序号")
    latest_order_seq: int = Field(default=0, description="最新事件订单内序号")

    @property
    def occupies_rider(self) -> bool:
        """当前状态是否占用骑手槽位（送达后释放）"""
        return (
            self.rider_id is not None
            and self.status in RIDER_HOLDING_STATES
            and self.status != OrderStatus.DELIVERED
        )
