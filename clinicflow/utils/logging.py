"""Logging configuration.

Every module logs under the ``clinicflow`` namespace; its level comes from
``SchedulingConfig.log_level`` (``CLINICFLOW_LOG_LEVEL``) and individual
module loggers inherit it unless given their own.
"""

import logging
import sys

from pydantic import BaseModel, Field, field_validator

from clinicflow.config import SchedulingConfig

NAMESPACE = "clinicflow"


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    quiet_loggers: list[str] = Field(default_factory=lambda: ["httpx", "uvicorn.access"])

    @field_validator("level")
    @classmethod
    def known_level(cls, value: str) -> str:
        return logging.getLevelName(level_number(value))

    @classmethod
    def from_scheduling_config(cls, config: SchedulingConfig) -> "LogConfig":
        return cls(level=config.log_level)


def level_number(level: str) -> int:
    number = logging.getLevelName(level.strip().upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level}")
    return number


def setup_logging(config: LogConfig | None = None) -> None:
    """Set up logging for the application."""
    if config is None:
        config = LogConfig.from_scheduling_config(SchedulingConfig.from_env())

    logging.basicConfig(
        level=logging.WARNING,
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger(NAMESPACE).setLevel(level_number(config.level))

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__); placed under ``clinicflow`` if outside it
        level: Optional explicit level, otherwise inherited from the namespace logger

    Returns:
        Configured logger instance
    """
    if name != NAMESPACE and not name.startswith(f"{NAMESPACE}."):
        name = f"{NAMESPACE}.{name}"
    logger = logging.getLogger(name)
    if level:
        logger.setLevel(level_number(level))
    return logger
