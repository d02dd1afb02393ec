"""Store Protocol 接口定义

定义 EventStore 与 NotificationTransport 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from collections.abc import AsyncIterator
from typing import Protocol

from ..models.event import Event
from ..models.notification import NotificationIntent


class EventStore(Protocol):
    """Event 存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_event(self, event: Event) -> Event:
        """追加事件（append-only），返回带全局 seq 的事件"""
        ...

    def read_from(self, order_id: str, since_seq: int = 0) -> AsyncIterator[Event]:
        """惰性读取指定订单 order_seq > since_seq 的事件"""
        ...

    def read_all_from(self, since_seq: int = 0) -> AsyncIterator[Event]:
        """按全局 seq 惰性读取 seq > since_seq 的事件"""
        ...

    async def get_next_order_seq(self, order_id: str) -> int:
        """获取指定订单的下一个 order_seq（MAX+1）"""
        ...

    async def get_last_seq(self) -> int:
        """获取当前最大全局 seq"""
        ...


class NotificationTransport(Protocol):
    """通知投递通道接口（外部协作方实现）"""

    async def send(self, intent: NotificationIntent) -> None:
        """投递通知意图；失败时抛出异常"""
        ...
