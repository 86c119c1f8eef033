"""Entry point for the deploy-agent CLI."""

from __future__ import annotations

import sys
from typing import List, Optional

from .cli import run_cli
from .utils.logging import get_logger

logger = get_logger(__name__)

# 与 shell 约定一致：被 SIGINT 中断时返回 130
EXIT_INTERRUPTED = 130


def app_main(argv: Optional[List[str]] = None) -> None:
    try:
        exit_code = run_cli(argv)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        exit_code = EXIT_INTERRUPTED
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    app_main()
