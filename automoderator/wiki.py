# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from pathlib import Path

import pywikibot

from .paths import LOG_DIR, STATE_DIR, ensure_dir


def prepare_runtime(workdir: Path) -> None:
    workdir.mkdir(parents=True, exist_ok=True)
    os.chdir(workdir)
    ensure_dir(LOG_DIR)
    ensure_dir(STATE_DIR)


def connect_site(lang: str, family: str = "wikipedia", username: str | None = None) -> pywikibot.Site:
    site = pywikibot.Site(lang, family, user=username or None)
    site.login()
    return site
