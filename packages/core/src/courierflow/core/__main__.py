"""CLI 入口模块 -- python -m courierflow.core <command>

支持的命令：
  rebuild-projections  从 events 表重建 orders 表与骑手槽位
  metrics              从事件日志重放统计指标并输出 JSON
"""

import asyncio
import sys

from .config import get_db_path, load_engine_config
from .logging_config import setup_logging

_COMMANDS = {
    "rebuild-projections": "从 events 表重建 orders 表与骑手槽位",
    "metrics": "从事件日志重放统计指标并输出 JSON",
}


def _print_usage() -> None:
    print("用法: python -m courierflow.core <command>")
    print("命令:")
    for name, help_text in _COMMANDS.items():
        print(f"  {name:<20} {help_text}")


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        _print_usage()
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]

    if command == "rebuild-projections":
        asyncio.run(rebuild_projections())
    elif command == "metrics":
        asyncio.run(print_metrics())
    else:
        print(f"未知命令: {command}")
        print(f"可用命令: {', '.join(_COMMANDS)}")
        sys.exit(1)


async def rebuild_projections() -> None:
    """执行 Projection 重建"""
    from .projection import rebuild_all
    from .store import create_store_group

    db_path = get_db_path()
    config = load_engine_config()

    print(f"数据库路径: {db_path}")
    print("开始重建 Projection...")

    store_group = await create_store_group(
        db_path,
        page_size=config.read_page_size,
        busy_timeout_ms=config.sqlite_busy_timeout_ms,
    )

    try:
        event_count = await rebuild_all(store_group)
        print(f"重建完成，处理 {event_count} 条事件")
    finally:
        await store_group.close()


async def print_metrics() -> None:
    """全量重放事件日志，输出统计快照"""
    from .analytics import AnalyticsAggregator
    from .store import create_store_group

    config = load_engine_config()
    store_group = await create_store_group(
        get_db_path(),
        page_size=config.read_page_size,
        busy_timeout_ms=config.sqlite_busy_timeout_ms,
    )

    try:
        aggregator = await AnalyticsAggregator.rebuild(store_group.event_reader)
        print(aggregator.snapshot().model_dump_json(indent=2))
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
