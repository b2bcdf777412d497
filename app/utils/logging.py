import logging
import sys
import os
from pathlib import Path
from loguru import logger
import json
from datetime import date

from app.utils.context import get_request_id

# Standard-library loggers whose records are routed through loguru
INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "celery",
    "celery.beat",
    "celery.worker",
    "kombu",
)


def _patch_request_id(record):
    # Loggers bound at import time still pick up the active request or task id
    request_id = get_request_id()
    if request_id:
        record["extra"]["request_id"] = request_id


class InterceptHandler(logging.Handler):
    """Forwards standard logging records to loguru at the caller's depth."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except (AttributeError, ValueError):
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


class CustomizeLogger:
    @classmethod
    def make_logger(cls, config_path: Path, environment: str = "logger"):
        with open(config_path) as config_file:
            config = json.load(config_file)
        logging_config = config.get(environment, config.get("logger"))

        level = os.getenv("LOG_LEVEL", logging_config.get("level", "INFO")).upper()
        logger.remove()
        logger.configure(extra={"request_id": "app"}, patcher=_patch_request_id)

        logger.add(
            sys.stdout,
            enqueue=True,
            backtrace=True,
            level=level,
            format=logging_config.get("console_format"),
            colorize=True,
        )

        log_dir = logging_config.get("log_dir")
        if log_dir:
            logger.add(
                f"{log_dir}/{date.today():%Y-%m-%d}-{logging_config.get('filename')}",
                rotation=logging_config.get("rotation"),
                retention=logging_config.get("retention"),
                enqueue=True,
                backtrace=True,
                level=level,
                colorize=False,
                **cls._file_format(logging_config),
            )

        cls._setup_intercept_handlers()
        return logger

    @staticmethod
    def _file_format(logging_config: dict) -> dict:
        if logging_config.get("use_json_logs") and logging_config.get("file_format") == "json":
            return {"serialize": True}
        return {"format": logging_config.get("file_format")}

    @staticmethod
    def _setup_intercept_handlers():
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

        for log_name in INTERCEPTED_LOGGERS:
            _logger = logging.getLogger(log_name)
            _logger.handlers = [InterceptHandler()]
            _logger.propagate = False


# Initialize logger
config_path = Path(__file__).resolve().parents[2] / "logging_config.json"
environment = (
    "production"
    if os.getenv("ENVIRONMENT", "development") == "production"
    else "logger"
)
custom_logger = CustomizeLogger.make_logger(config_path, environment)


def get_logger():
    """Logger bound to the current request or task id."""
    return custom_logger.bind(request_id=get_request_id() or "app")
