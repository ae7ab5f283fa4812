#!/usr/bin/env python3
"""lisa.logging_setup

Logging setup for the LISA CLIs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None, fmt: Optional[str] = None) -> None:
    root = logging.getLogger()
    if root.handlers:
        return  # already configured
    lvl = getattr(logging, level.upper(), logging.INFO)
    fmt = fmt or DEFAULT_FORMAT
    handlers = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file), mode="w", encoding="utf-8"))
    logging.basicConfig(level=lvl, format=fmt, handlers=handlers)
    for noisy in ("rasterio", "fiona", "pyogrio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
