"""courierflow Core Store -- SQLite 持久化实现

提供工厂函数创建 Store 实例组：
写连接承载所有事务，读连接（WAL）只读已提交数据，读不阻塞写。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
import structlog

from ..exceptions import EngineTimeoutError
from .checkpoint_store import SqliteCheckpointStore
from .event_store import SqliteEventStore
from .notification_store import SqliteNotificationStore
from .order_store import SqliteOrderStore
from .rider_store import SqliteRiderStore
from .sqlite_init import init_db
from .transaction import append_events, commit_order_events

log = structlog.get_logger()


class StoreGroup:
    """Store 实例组 -- 写连接 + 读连接

    write_lock 序列化写连接上的事务，避免不同命令的语句交织进同一个 SQLite 事务。
    写入方通过 write_scope() 获取，等待时间受 lock_timeout_s 约束。
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection,
        page_size: int = 200,
        lock_timeout_s: float = 5.0,
    ) -> None:
        self.conn = conn
        self.read_conn = read_conn
        self.write_lock = asyncio.Lock()
        self.lock_timeout_s = lock_timeout_s

        # 写侧
        self.event_store = SqliteEventStore(conn, page_size)
        self.order_store = SqliteOrderStore(conn)
        self.rider_store = SqliteRiderStore(conn)
        self.notification_store = SqliteNotificationStore(conn)
        self.checkpoint_store = SqliteCheckpointStore(conn)

        # 读侧
        self.event_reader = SqliteEventStore(read_conn, page_size)
        self.order_reader = SqliteOrderStore(read_conn)
        self.rider_reader = SqliteRiderStore(read_conn)
        self.notification_reader = SqliteNotificationStore(read_conn)

    @asynccontextmanager
    async def write_scope(self) -> AsyncIterator[None]:
        """持有 write_lock 执行一个写事务

        Raises:
            EngineTimeoutError: lock_timeout_s 内未获得 write_lock
        """
        try:
            async with asyncio.timeout(self.lock_timeout_s):
                await self.write_lock.acquire()
        except TimeoutError:
            log.warning("lock_timeout", key="write_lock", timeout_s=self.lock_timeout_s)
            raise EngineTimeoutError("write_lock", self.lock_timeout_s) from None
        try:
            yield
        finally:
            self.write_lock.release()

    async def close(self) -> None:
        await self.read_conn.close()
        await self.conn.close()


async def create_store_group(
    db_path: str,
    page_size: int = 200,
    busy_timeout_ms: int = 5000,
    lock_timeout_s: float = 5.0,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径（读写分离需要文件库，不支持 :memory:）
        page_size: 事件日志分页读取大小
        busy_timeout_ms: SQLite busy_timeout
        lock_timeout_s: write_lock 等待上限（秒）

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn, busy_timeout_ms)

    read_conn = await aiosqlite.connect(db_path)
    read_conn.row_factory = aiosqlite.Row
    await read_conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")

    return StoreGroup(
        conn=conn,
        read_conn=read_conn,
        page_size=page_size,
        lock_timeout_s=lock_timeout_s,
    )


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteEventStore",
    "SqliteOrderStore",
    "SqliteRiderStore",
    "SqliteNotificationStore",
    "SqliteCheckpointStore",
    "init_db",
    "append_events",
    "commit_order_events",
]
