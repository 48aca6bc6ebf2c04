"""Logging setup for the fwlink CLI — stdlib loggers rendered by structlog.

Library modules only call ``logging.getLogger(__name__)``; nothing is
configured until the CLI calls :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import logging.config
import os

import structlog

LEVEL_ENV = "FWLINK_LOG_LEVEL"
FORMAT_ENV = "FWLINK_LOG_FORMAT"

_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="%H:%M:%S"),
    structlog.processors.format_exc_info,
]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(verbose: bool = False) -> None:
    """Route ``fwlink.*`` records to stderr.

    ``FWLINK_LOG_LEVEL`` overrides the level (INFO, or DEBUG with
    ``--verbose``); ``FWLINK_LOG_FORMAT`` is ``console`` or ``json``.
    """
    level = os.environ.get(LEVEL_ENV, "DEBUG" if verbose else "INFO").upper()
    log_format = os.environ.get(FORMAT_ENV, "console").lower()

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdout carries command output (JSON plans, summaries)
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "fwlink": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": _PRE_CHAIN,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        _renderer(log_format),
                    ],
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "fwlink",
                },
            },
            "loggers": {
                "fwlink": {"level": level, "handlers": ["stderr"], "propagate": False},
            },
        }
    )
