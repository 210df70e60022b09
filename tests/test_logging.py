"""Tests for logging setup."""

import logging

import pytest

from clinicflow.config import SchedulingConfig
from clinicflow.utils.logging import NAMESPACE, LogConfig, get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(LogConfig())


class TestLogging:
    """Tests for the clinicflow logger namespace."""

    def test_module_loggers_nest_under_namespace(self):
        assert get_logger("clinicflow.services.waitlist").name == "clinicflow.services.waitlist"
        assert get_logger("scripts.seed_demo").name == "clinicflow.scripts.seed_demo"
        assert get_logger("clinicflow.services.engine").level == logging.NOTSET

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("CLINICFLOW_LOG_LEVEL", "debug")
        setup_logging()
        assert logging.getLogger(NAMESPACE).level == logging.DEBUG
        assert get_logger("clinicflow.services.engine").getEffectiveLevel() == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_level_from_scheduling_config(self):
        config = LogConfig.from_scheduling_config(SchedulingConfig(log_level="warning"))
        assert config.level == "WARNING"
        setup_logging(config)
        assert not get_logger("clinicflow.services.appointments").isEnabledFor(logging.INFO)

    def test_explicit_module_level(self):
        assert get_logger("clinicflow.explicit", "error").level == logging.ERROR

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            LogConfig(level="loud")
