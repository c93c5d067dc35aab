"""Logging setup shared by the API process."""

import logging.config

from orkut.libs import config


def build_logging_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "verbose": {
                "format": "[{asctime}] {levelname} {name} {message}",
                "style": "{",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "audit": {
                "format": "[{asctime}] AUDIT {message}",
                "style": "{",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "verbose",
            },
            "audit_console": {
                "class": "logging.StreamHandler",
                "formatter": "audit",
            },
        },
        "loggers": {
            "orkut": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
            "orkut.audit": {
                "handlers": ["audit_console"],
                "level": "INFO",
                "propagate": False,
            },
        },
    }


def configure_logging(level: str = None) -> None:
    logging.config.dictConfig(build_logging_config(level or config.log_level()))
