from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(settings) -> Optional[Path]:
    """Configure root logging; adds a rotating file handler when LOG_FILE is set."""
    fmt = logging.Formatter(_FORMAT)
    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)

    logger = logging.getLogger()  # root
    logger.setLevel(level)

    # avoid duplicate handlers on reload
    if not any(getattr(h, "_inventory_stream", False) for h in logger.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        stream._inventory_stream = True
        logger.addHandler(stream)

    log_path: Optional[Path] = None
    if settings.log_file:
        log_path = Path(settings.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if not any(
            isinstance(h, logging.handlers.RotatingFileHandler)
            and getattr(h, "baseFilename", "") == str(log_path.resolve())
            for h in logger.handlers
        ):
            handler = logging.handlers.RotatingFileHandler(
                log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8"
            )
            handler.setFormatter(fmt)
            handler.setLevel(level)
            logger.addHandler(handler)

    # uvicorn installs its own handlers; just align the levels
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logging.getLogger(name).setLevel(level)

    return log_path
