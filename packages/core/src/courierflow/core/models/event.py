"""Event Domain Model

事件表 append-only，不允许更新或删除。
event_id 使用 ULID 格式，时间有序。
seq 为全局序号（提交时由事件日志分配），order_seq 同一订单内严格单调递增。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ActorRole, EventType


class Event(BaseModel):
    """Event 数据模型

    seq=0 表示尚未提交；提交后由 EventStore 返回带 seq 的副本。
    """

    event_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    seq: int = Field(default=0, description="全局序号，提交时分配，严格递增")
    order_id: str = Field(description="关联的订单 ID")
    order_seq: int = Field(description="订单内序号，严格单调递增")
    ts: datetime = Field(description="事件时间戳")
    type: EventType = Field(description="事件类型")
    schema_version: int = Field(default=1, description="Schema 版本号")
    actor_role: ActorRole = Field(description="操作者角色")
    actor_id: str = Field(default="", description="操作者标识")
    payload: dict[str, Any] = Field(default_factory=dict, description="结构化 payload")
    trace_id: str = Field(description="追踪标识，同一订单共享")

    @property
    def committed(self) -> bool:
        return self.seq > 0
