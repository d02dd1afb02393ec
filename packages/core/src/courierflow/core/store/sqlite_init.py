"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# events 表 DDL（权威数据源，append-only）
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id        TEXT NOT NULL UNIQUE,
    order_id        TEXT NOT NULL,
    order_seq       INTEGER NOT NULL,
    ts              TEXT NOT NULL,
    type            TEXT NOT NULL,
    schema_version  INTEGER NOT NULL DEFAULT 1,
    actor_role      TEXT NOT NULL,
    actor_id        TEXT NOT NULL DEFAULT '',
    payload         TEXT NOT NULL DEFAULT '{}',
    trace_id        TEXT NOT NULL DEFAULT ''
);
"""

_EVENTS_INDEXES = [
    # 订单内事件序号唯一约束（确保 order_seq 严格单调递增）
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_order_seq ON events(order_id, order_seq);",
]

# orders 表 DDL（events 的物化视图）
_ORDERS_DDL = """
CREATE TABLE IF NOT EXISTS orders (
    order_id          TEXT PRIMARY KEY,
    customer_ref      TEXT NOT NULL,
    amount            TEXT NOT NULL,
    status            TEXT NOT NULL DEFAULT 'CREATED',
    rider_id          TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    status_history    TEXT NOT NULL DEFAULT '[]',
    proof             TEXT,
    notes             TEXT NOT NULL DEFAULT '',
    latest_seq        INTEGER NOT NULL DEFAULT 0,
    latest_order_seq  INTEGER NOT NULL DEFAULT 0
);
"""

_ORDERS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);",
    "CREATE INDEX IF NOT EXISTS idx_orders_rider_id ON orders(rider_id);",
    "CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at DESC);",
]

# riders 表 DDL（骑手在岗标记 + 当前订单槽位）
_RIDERS_DDL = """
CREATE TABLE IF NOT EXISTS riders (
    rider_id          TEXT PRIMARY KEY,
    available         INTEGER NOT NULL DEFAULT 1,
    current_order_id  TEXT,
    updated_at        TEXT NOT NULL
);
"""

_RIDERS_INDEXES = [
    # 一个订单最多被一个骑手槽位持有
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_riders_current_order "
        "ON riders(current_order_id) WHERE current_order_id IS NOT NULL;"
    ),
]

# notifications 表 DDL（通知意图 + 投递状态，按事件去重）
_NOTIFICATIONS_DDL = """
CREATE TABLE IF NOT EXISTS notifications (
    intent_id       TEXT PRIMARY KEY,
    event_id        TEXT NOT NULL,
    recipient_role  TEXT NOT NULL,
    recipient_id    TEXT NOT NULL,
    order_id        TEXT NOT NULL,
    kind            TEXT NOT NULL,
    payload         TEXT NOT NULL DEFAULT '{}',
    status          TEXT NOT NULL DEFAULT 'pending',
    attempts        INTEGER NOT NULL DEFAULT 0,
    last_error      TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
"""

_NOTIFICATIONS_INDEXES = [
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_notifications_dedup "
        "ON notifications(event_id, recipient_role, kind);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_notifications_status ON notifications(status);",
]

# analytics_checkpoint 表 DDL（折叠断点：name 区分统计 analytics 与通知 notifications）
_CHECKPOINT_DDL = """
CREATE TABLE IF NOT EXISTS analytics_checkpoint (
    name        TEXT PRIMARY KEY,
    last_seq    INTEGER NOT NULL DEFAULT 0,
    state       TEXT NOT NULL DEFAULT '{}',
    updated_at  TEXT NOT NULL
);
"""


async def init_db(conn: aiosqlite.Connection, busy_timeout_ms: int = 5000) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
        busy_timeout_ms: 写锁等待上限（毫秒）
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA synchronous = FULL;")
    await conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")

    for ddl in (_EVENTS_DDL, _ORDERS_DDL, _RIDERS_DDL, _NOTIFICATIONS_DDL, _CHECKPOINT_DDL):
        await conn.execute(ddl)

    for idx_sql in _EVENTS_INDEXES + _ORDERS_INDEXES + _RIDERS_INDEXES + _NOTIFICATIONS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
