"""Settings loading and logging configuration."""

import logging

import pytest
from pydantic import ValidationError

from src.common.logging_utils import configure_logging
from src.common.settings import HarnessSettings, load_settings


class TestHarnessSettings:

    def test_defaults(self):
        settings = HarnessSettings()
        assert settings.poll_interval == 0.1
        assert settings.coldstart_max_polls == 600
        assert settings.recovery_max_polls == 200
        assert settings.budget_cpu_millicores == 1000
        assert settings.budget_memory_mi == 512
        assert settings.load_script_list == ["load-test.js", "cpu-bound-test.js"]

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("BENCH_POLL_INTERVAL", "0.5")
        monkeypatch.setenv("BENCH_WASM_NAMESPACE", "spin")
        settings = HarnessSettings()
        assert settings.poll_interval == 0.5
        assert settings.wasm_namespace == "spin"

    @pytest.mark.parametrize("interval", [0.05, 2.0])
    def test_poll_interval_bounds(self, interval):
        with pytest.raises(ValidationError):
            HarnessSettings(poll_interval=interval)

    def test_overrides_skip_none(self, monkeypatch):
        monkeypatch.setenv("BENCH_LOG_LEVEL", "warning")
        settings = load_settings(log_level=None, poll_interval=0.2)
        assert settings.log_level == "WARNING"
        assert settings.poll_interval == 0.2


class TestConfigureLogging:

    def test_handlers_replaced_not_stacked(self):
        configure_logging("INFO")
        logger = configure_logging("DEBUG")

        assert logger.name == "src"
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "bench.log"
        logger = configure_logging("INFO", log_file)

        logging.getLogger("src.harness.test").info("hello")
        for handler in logger.handlers:
            handler.flush()

        assert "hello" in log_file.read_text()
