"""Logging helpers.

Log records go to stderr; stdout is reserved for the service messages the
agent emits for the orchestrating server.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_LOGGING_CONFIGURED = False

LOG_LEVEL_ENV = "DEPLOY_AGENT_LOG_LEVEL"


def _configured_level() -> int:
    name = os.getenv(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: Optional[str] = None) -> logging.Logger:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=_configured_level(),
            stream=sys.stderr,
            format="[%(asctime)s] %(levelname)s %(name)s (%(threadName)s) - %(message)s",
        )
        # boto 的调试日志过多
        logging.getLogger("botocore").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        _LOGGING_CONFIGURED = True
    return logging.getLogger(name)


def set_verbose(enabled: bool) -> None:
    """Switch the root logger to DEBUG, or back to the configured level."""
    get_logger().setLevel(logging.DEBUG if enabled else _configured_level())
