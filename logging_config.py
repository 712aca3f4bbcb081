"""Logging setup shared by the command line and the streamlit app."""

from __future__ import annotations

import logging.config
from pathlib import Path
from typing import Optional

import config


def build_logging_config(level: str = "INFO", log_file: Optional[str] = None) -> dict:
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {"format": "%(levelname)s %(name)s: %(message)s"},
            "verbose": {
                "format": "%(asctime)s %(levelname)s %(name)s "
                "[%(process)d:%(threadName)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "simple",
            },
        },
        "loggers": {
            # root logger
            "": {
                "level": "DEBUG",
                "handlers": ["console"],
            },
            # SQL echo is far too chatty at DEBUG
            "sqlalchemy": {"level": "WARNING", "propagate": True},
        },
    }

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "verbose",
            "filename": log_file,
            "maxBytes": 5_000_000,
            "backupCount": 5,
            "encoding": "utf-8",
        }
        logging_config["loggers"][""]["handlers"].append("file")

    return logging_config


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    logging.config.dictConfig(
        build_logging_config((level or config.LOG_LEVEL).upper(), log_file or config.LOG_FILE)
    )
