# Version History
# v1.0 - Process-wide logging configuration for the push backend.

from __future__ import annotations

import logging
import sys


def setup_logging(level: int | str = logging.INFO, format_string: str | None = None) -> None:
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=format_string, stream=sys.stdout, force=True)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
