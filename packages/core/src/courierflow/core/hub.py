"""NotificationHub -- 内存中的通知投递通道

每个接收方 (recipient_role, recipient_id) 可有多个在线订阅队列。
实现 NotificationTransport 接口：至少一个在线队列收到通知才算投递成功，
否则抛出 RecipientOfflineError，由 dispatcher 标记 failed，接收方上线后可补投。
"""

import asyncio
from collections import defaultdict

import structlog

from .exceptions import RecipientOfflineError
from .models.enums import RecipientRole
from .models.notification import NotificationIntent

log = structlog.get_logger()

RecipientKey = tuple[RecipientRole, str]


class NotificationHub:
    """基于 asyncio.Queue 的通知通道"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        self._queues: dict[RecipientKey, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    async def subscribe(self, role: RecipientRole, recipient_id: str) -> asyncio.Queue:
        """接收方上线，返回推送队列"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._queues[(role, recipient_id)].add(queue)
        return queue

    async def unsubscribe(
        self, role: RecipientRole, recipient_id: str, queue: asyncio.Queue
    ) -> None:
        self._drop((role, recipient_id), [queue])

    async def send(self, intent: NotificationIntent) -> None:
        """推送给接收方的所有在线队列

        积压满的队列视为消费方失联，移出订阅。

        Raises:
            RecipientOfflineError: 没有任何队列收到通知
        """
        key = (intent.recipient_role, intent.recipient_id)
        received = 0
        stalled = []
        for queue in self._queues.get(key, ()):
            try:
                queue.put_nowait(intent)
                received += 1
            except asyncio.QueueFull:
                stalled.append(queue)

        if stalled:
            self._drop(key, stalled)
            log.warning(
                "notification_subscriber_dropped",
                recipient_role=intent.recipient_role.value,
                recipient_id=intent.recipient_id,
                dropped=len(stalled),
            )
        if not received:
            raise RecipientOfflineError(intent.recipient_role.value, intent.recipient_id)

    def subscriber_count(self, role: RecipientRole, recipient_id: str) -> int:
        return len(self._queues.get((role, recipient_id), ()))

    def _drop(self, key: RecipientKey, queues: list[asyncio.Queue]) -> None:
        live = self._queues.get(key)
        if live is None:
            return
        live.difference_update(queues)
        if not live:
            del self._queues[key]
