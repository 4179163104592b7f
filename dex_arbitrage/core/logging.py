from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from dex_arbitrage.config.models import LoggingConfig

_MAX_LOG_SIZE = 10 * 1024 * 1024
_BACKUP_COUNT = 5
_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_COMPONENT_LOGS = {
    "dex_arbitrage.system": "system.log",
    "dex_arbitrage.venues": "venues.log",
    "dex_arbitrage.chain": "chain.log",
    "dex_arbitrage.services.token_universe": "token_universe.log",
    "dex_arbitrage.services.opportunity_evaluator": "opportunity_evaluator.log",
    "dex_arbitrage.services.decision_policy": "decision_policy.log",
    "dex_arbitrage.services.arbitrage_engine": "arbitrage_engine.log",
    "dex_arbitrage.services.scan_loop": "scan_loop.log",
    "dex_arbitrage.services.telegram_notifier": "telegram_notifier.log",
    "dex_arbitrage.core.http": "http.log",
}


def _create_file_handler(log_file: Path, level: str) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        log_file,
        maxBytes=_MAX_LOG_SIZE,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FORMAT))
    return handler


def _setup_logger(logger_name: str, log_file: str, level: str, logs_dir: Path) -> logging.Logger:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    # component records still reach the root console handler
    logger.propagate = True
    logger.addHandler(_create_file_handler(logs_dir / log_file, level))
    return logger


def configure_logging(config: LoggingConfig) -> None:
    shared_processors: list[structlog.types.Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor
    if config.json_format:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(config.level)),
        cache_logger_on_first_use=True,
    )

    logs_dir = Path(config.directory)
    logs_dir.mkdir(parents=True, exist_ok=True)

    level = config.level
    for logger_name, log_file in _COMPONENT_LOGS.items():
        _setup_logger(logger_name, log_file, level, logs_dir)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(_FORMAT))
    root_logger.addHandler(console_handler)
