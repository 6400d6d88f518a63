# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .env import get_env, get_int_env
from .paths import BOT_LOG_FILE

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_CONFIGURED_MARKER = "_automoderator_handler"


def _resolve_level(raw: str | None) -> int:
    level = logging.getLevelName(str(raw or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_root_logging(logger_name: str | None = None, log_file: Path | None = None) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(_resolve_level(get_env("AUTOMOD_LOG_LEVEL", "INFO")))

    if not any(getattr(handler, _CONFIGURED_MARKER, False) for handler in root.handlers):
        formatter = logging.Formatter(LOG_FORMAT)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        setattr(console, _CONFIGURED_MARKER, True)
        root.addHandler(console)

        target = log_file or Path(get_env("AUTOMOD_LOG_FILE", str(BOT_LOG_FILE)) or str(BOT_LOG_FILE))
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                target,
                maxBytes=max(get_int_env("AUTOMOD_LOG_MAX_BYTES", 5_000_000), 10_000),
                backupCount=max(get_int_env("AUTOMOD_LOG_BACKUPS", 5), 1),
                encoding="utf-8",
            )
        except OSError as exc:
            root.warning("File logging disabled (%s): %s", target, exc)
        else:
            file_handler.setFormatter(formatter)
            setattr(file_handler, _CONFIGURED_MARKER, True)
            root.addHandler(file_handler)

    # pywikibot is chatty at INFO level
    logging.getLogger("pywiki").setLevel(logging.WARNING)
    return logging.getLogger(logger_name or "automoderator")
