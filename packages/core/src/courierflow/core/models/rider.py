"""RiderAvailability Domain Model

riders 表记录骑手在岗标记与当前订单槽位。
current_order_id 只能由 AssignmentCoordinator 在提交事件的同一事务内修改。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class RiderAvailability(BaseModel):
    """骑手可用性"""

    rider_id: str = Field(description="骑手 ID")
    available: bool = Field(default=True, description="是否在岗")
    current_order_id: str | None = Field(default=None, description="当前持有的订单")
    updated_at: datetime = Field(description="更新时间")

    @property
    def can_accept(self) -> bool:
        return self.available and self.current_order_id is None
