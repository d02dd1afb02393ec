"""日志配置测试"""

import json
import logging

import pytest
import structlog
from courierflow.core.logging_config import setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("aiosqlite").setLevel(logging.NOTSET)
    structlog.reset_defaults()


class TestSetupLogging:
    def test_level_from_argument(self, restore_logging):
        setup_logging(log_format="dev", log_level="debug")
        assert logging.getLogger().level == logging.DEBUG
        # aiosqlite 不低于 INFO
        assert logging.getLogger("aiosqlite").level == logging.INFO

    def test_invalid_level_falls_back(self, restore_logging, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("COURIERFLOW_LOG_LEVEL", "chatty")
        setup_logging(log_format="dev")
        assert logging.getLogger().level == logging.INFO

    def test_json_output_carries_trace_id(self, restore_logging, capsys):
        setup_logging(log_format="json", log_level="INFO")
        log = structlog.get_logger("courierflow.test")

        with structlog.contextvars.bound_contextvars(trace_id="trace-o1"):
            log.info("order_created", order_id="o1")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "order_created"
        assert record["trace_id"] == "trace-o1"
        assert record["order_id"] == "o1"
        assert record["level"] == "info"
