"""Tests for configuration and logging setup."""

import asyncio
import json
import logging
import os

import pytest

from flow_engine.config import (
    EngineConfig, Environment, LogLevel, get_config, get_testing_config, load_config, reset_config
)
from flow_engine.core.exceptions import ConfigurationError
from flow_engine.core.execution_logger import ExecutionLogger
from flow_engine.core.logging import (
    RunContextFilter, RunFormatter, StructuredFormatter, clear_logging_context, get_logging_context,
    log_with_context, set_logging_context, setup_logging, to_python_level
)


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig()

        assert config.environment == Environment.DEVELOPMENT
        assert config.log_level == LogLevel.INFO
        assert config.node_timeout is None
        assert config.export_dir == "execution_logs"
        assert config.auto_export is False
        assert config.console_echo is True
        assert not config.is_production

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOW_ENGINE_ENVIRONMENT", "PRODUCTION")
        monkeypatch.setenv("FLOW_ENGINE_LOG_LEVEL", "debug")
        monkeypatch.setenv("FLOW_ENGINE_NODE_TIMEOUT", "2.5")
        monkeypatch.setenv("FLOW_ENGINE_AUTO_EXPORT", "yes")
        monkeypatch.setenv("FLOW_ENGINE_CONSOLE_ECHO", "false")

        config = EngineConfig.from_env()

        assert config.is_production
        assert config.log_level == LogLevel.DEBUG
        assert config.node_timeout == 2.5
        assert config.auto_export is True
        assert config.console_echo is False

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("FLOW_ENGINE_NODE_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError) as exc_info:
            EngineConfig.from_env()

        assert exc_info.value.context["config_key"] == "NODE_TIMEOUT"

    def test_invalid_values(self, monkeypatch):
        monkeypatch.setenv("FLOW_ENGINE_NODE_TIMEOUT", "-1")

        with pytest.raises(ConfigurationError):
            EngineConfig.from_env()

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("FLOW_ENGINE_ENVIRONMENT", "staging")

        with pytest.raises(ConfigurationError):
            EngineConfig.from_env()

    def test_global_config_cached(self):
        assert get_config() is get_config()

        first = get_config()
        reset_config()
        assert get_config() is not first

    def test_load_config_reads_dotenv(self, tmp_path):
        env_file = tmp_path / "engine.env"
        env_file.write_text("FLOW_ENGINE_EXPORT_DIR=/tmp/flow-runs\nFLOW_ENGINE_ENGINE_VERSION=2.1.0\n")

        try:
            config = load_config(str(env_file))

            assert config.export_dir == "/tmp/flow-runs"
            assert config.engine_version == "2.1.0"
            assert get_config() is config
        finally:
            os.environ.pop("FLOW_ENGINE_EXPORT_DIR", None)
            os.environ.pop("FLOW_ENGINE_ENGINE_VERSION", None)

    def test_testing_config(self):
        config = get_testing_config()

        assert config.console_echo is False
        assert config.node_timeout == 10

    def test_version_in_run_metadata(self):
        execution_logger = ExecutionLogger(EngineConfig(engine_version="9.9.9", console_echo=False))
        execution_logger.start("wf", "Flow")

        metadata = execution_logger.current_run().metadata

        assert metadata.version == "9.9.9"
        assert metadata.environment == "development"


class TestLogging:

    def test_to_python_level(self):
        assert to_python_level("debug") == logging.DEBUG
        assert to_python_level("warn") == logging.WARNING
        assert to_python_level("ERROR") == logging.ERROR
        assert to_python_level("unknown") == logging.INFO

    def test_structured_formatter(self):
        record = logging.LogRecord("flow_engine.test", logging.INFO, __file__, 10, "hello", None, None)
        record.extra_fields = {"node_id": "n1"}

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["node_id"] == "n1"

    def test_log_with_context_drops_empty_fields(self, caplog):
        logger = logging.getLogger("flow_engine.test")

        with caplog.at_level(logging.INFO, logger="flow_engine.test"):
            log_with_context(logger, logging.INFO, "entry", node_id="n1", node_name=None)

        assert caplog.records[-1].extra_fields == {"node_id": "n1"}

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        root = logging.getLogger()
        saved_handlers = root.handlers[:]
        saved_level = root.level

        try:
            setup_logging(level="DEBUG", log_file=str(log_file), structured=True)
            set_logging_context(execution_id="run-1")
            logging.getLogger("flow_engine.test").info("written")
            for handler in root.handlers:
                handler.flush()

            lines = log_file.read_text().strip().splitlines()
            entry = json.loads(lines[-1])
            assert entry["message"] == "written"
            assert entry["execution_id"] == "run-1"
        finally:
            clear_logging_context()
            for handler in root.handlers[:]:
                root.removeHandler(handler)
                handler.close()
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
            logging.getLogger("flow_engine").setLevel(logging.NOTSET)

    def test_console_echo(self, caplog):
        execution_logger = ExecutionLogger(EngineConfig(), console_echo=True)

        with caplog.at_level(logging.INFO):
            execution_logger.start("wf-echo", "Echo Flow")

        record = caplog.records[-1]
        assert record.getMessage() == "[Echo Flow] Starting workflow execution: Echo Flow"
        assert record.extra_fields["workflow_id"] == "wf-echo"
        assert record.extra_fields["event"] == "workflow_start"

    def test_run_formatter_appends_run_tags(self):
        formatter = RunFormatter("%(levelname)s %(message)s%(run_suffix)s")
        record = logging.LogRecord("flow_engine.test", logging.INFO, __file__, 10, "tick", None, None)
        record.extra_fields = {"execution_id": "run-7", "node_id": "n2"}

        assert formatter.format(record) == "INFO tick [run-7 n2]"

    def test_run_formatter_without_context(self):
        formatter = RunFormatter("%(message)s%(run_suffix)s")
        record = logging.LogRecord("flow_engine.test", logging.INFO, __file__, 10, "plain", None, None)

        assert formatter.format(record) == "plain"

    def test_explicit_fields_win_over_run_context(self):
        record = logging.LogRecord("flow_engine.test", logging.INFO, __file__, 10, "x", None, None)
        record.extra_fields = {"node_id": "explicit"}

        set_logging_context(node_id="from-context", execution_id="run-1")
        try:
            RunContextFilter().filter(record)
        finally:
            clear_logging_context()

        assert record.extra_fields == {"node_id": "explicit", "execution_id": "run-1"}

    @pytest.mark.asyncio
    async def test_run_context_isolated_per_task(self):
        seen = {}

        async def run(execution_id):
            set_logging_context(execution_id=execution_id)
            await asyncio.sleep(0.01)
            seen[execution_id] = get_logging_context()

        await asyncio.gather(run("a"), run("b"))

        assert seen == {"a": {"execution_id": "a"}, "b": {"execution_id": "b"}}
        assert get_logging_context() == {}
