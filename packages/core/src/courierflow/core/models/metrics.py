"""MetricsSnapshot -- 统计快照（派生数据，非权威）"""

from decimal import Decimal

from pydantic import BaseModel, Field


class MetricsSnapshot(BaseModel):
    """统计快照，可通过重放事件日志重建"""

    last_seq: int = Field(default=0, description="已处理的最后一个全局序号")
    completed_revenue: Decimal = Field(default=Decimal("0"), description="已送达订单收入")
    count_by_status: dict[str, int] = Field(default_factory=dict)
    mean_time_in_status_s: dict[str, float] = Field(default_factory=dict)
    fulfillment_rate: float | None = Field(
        default=None,
        description="送达 / (送达 + 取消)，无终态订单时为 None",
    )
    mean_delivery_time_s: float | None = Field(default=None, description="下单到送达平均耗时")
    deliveries_by_rider: dict[str, int] = Field(default_factory=dict)
