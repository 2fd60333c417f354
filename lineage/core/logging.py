from __future__ import annotations

import logging

from lineage.core.config import get_settings


_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Install a single stream handler so repeated app factories do not duplicate output.
    settings = get_settings()
    root = logging.getLogger()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    root.setLevel(level)
    if any(getattr(handler, "_lineage_handler", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._lineage_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
