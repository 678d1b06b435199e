# utils/logging_setup.py

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_FILENAME = "report-ingestor.log"


def configure_logging(level: int = logging.INFO, log_dir: Optional[Path] = None) -> logging.Logger:
    """
    Console handler always; file handler under `log_dir` when given.
    Calling it again replaces the handlers it installed before.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        if getattr(h, "_report_ingestor", False):
            root.removeHandler(h)
            h.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8"))

    for h in handlers:
        h.setLevel(level)
        h.setFormatter(formatter)
        h._report_ingestor = True  # type: ignore[attr-defined]
        root.addHandler(h)
    return root
