"""structlog 配置模块

dev 模式：控制台可读输出
json 模式：每行一个 JSON 对象，便于日志采集
命令执行期间通过 contextvars 绑定 trace_id，所有日志行自动携带。
"""

import logging
import os

import structlog

# aiosqlite 在 DEBUG 级别会逐条打印 SQL 调用
_NOISY_LOGGERS = ("aiosqlite",)


def _resolve_level(log_level: str) -> int:
    level = logging.getLevelName(log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog 与标准库 logging

    未显式传参时读取环境变量：
    - COURIERFLOW_LOG_FORMAT: "json" 或 "dev"（默认）
    - COURIERFLOW_LOG_LEVEL: 日志级别（默认 INFO，非法值按 INFO 处理）
    """
    log_format = log_format or os.environ.get("COURIERFLOW_LOG_FORMAT", "dev")
    level = _resolve_level(log_level or os.environ.get("COURIERFLOW_LOG_LEVEL", "INFO"))

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=pre_chain,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
