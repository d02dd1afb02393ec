"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、命令超时、分页读取大小等可配置项。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("COURIERFLOW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "COURIERFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "courierflow.db"),
    )


class EngineConfig(BaseModel):
    """引擎运行配置

    环境变量:
        COURIERFLOW_COMMAND_TIMEOUT_S: 单个命令等待锁的上限（秒，默认 5）
        COURIERFLOW_READ_PAGE_SIZE: 事件日志分页读取大小（默认 200）
        COURIERFLOW_SQLITE_BUSY_TIMEOUT_MS: SQLite busy_timeout（毫秒，默认 5000）
        COURIERFLOW_DELIVERY_TIMEOUT_S: 单次通知投递的上限（秒，默认 2）
    """

    command_timeout_s: float = Field(default=5.0, gt=0, description="锁等待超时（秒）")
    read_page_size: int = Field(default=200, ge=1, description="分页读取大小")
    sqlite_busy_timeout_ms: int = Field(default=5000, ge=0, description="SQLite busy_timeout")
    delivery_timeout_s: float = Field(default=2.0, gt=0, description="通知投递超时（秒）")


_ENV_FIELDS: dict[str, tuple[str, type]] = {
    "COURIERFLOW_COMMAND_TIMEOUT_S": ("command_timeout_s", float),
    "COURIERFLOW_READ_PAGE_SIZE": ("read_page_size", int),
    "COURIERFLOW_SQLITE_BUSY_TIMEOUT_MS": ("sqlite_busy_timeout_ms", int),
    "COURIERFLOW_DELIVERY_TIMEOUT_S": ("delivery_timeout_s", float),
}


def load_engine_config() -> EngineConfig:
    """从环境变量加载引擎配置

    非法值记录 warning 并回退到默认值，不阻塞启动。
    """
    defaults = EngineConfig()
    kwargs: dict = {}

    for env_var, (field_name, caster) in _ENV_FIELDS.items():
        val = os.environ.get(env_var)
        if not val:
            continue
        try:
            parsed = caster(val)
            # 逐字段校验范围，单个坏值不影响其它字段
            EngineConfig(**{field_name: parsed})
        except ValueError:
            log.warning(
                "invalid_engine_config",
                env_var=env_var,
                value=val,
                fallback=getattr(defaults, field_name),
            )
            continue
        kwargs[field_name] = parsed

    return EngineConfig(**kwargs)
