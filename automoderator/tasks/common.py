# -*- coding: utf-8 -*-
from __future__ import annotations

import time
from typing import Callable

import pywikibot

from automoderator.locking import LockUnavailableError, hold_lock
from automoderator.mediawiki import build_service, load_wiki_policy
from automoderator.paths import ROOT_DIR
from automoderator.policy import Policy
from automoderator.service import RevertService
from automoderator.settings import RuntimeSettings
from automoderator.task_control import RunPausedError, ensure_runtime_allowed, report_lock_unavailable, report_run_paused
from automoderator.wiki import connect_site, prepare_runtime


def connect_service(settings: RuntimeSettings) -> tuple[pywikibot.Site, RevertService]:
    prepare_runtime(ROOT_DIR)
    site = connect_site(settings.lang, settings.family, settings.username)
    policy = load_wiki_policy(site, settings.config_page, Policy.from_env(), settings.multilingual_config_page)
    return site, build_service(site, settings, policy)


def run_guarded(script_name: str, lock_name: str, body: Callable[[float], int]) -> int:
    """Run `body(started_monotonic)` unless the bot is paused or another run holds the lock."""
    started = time.monotonic()
    try:
        ensure_runtime_allowed(script_name)
    except RunPausedError as exc:
        return report_run_paused(script_name, started, exc.reason)
    try:
        with hold_lock(lock_name):
            return body(started)
    except LockUnavailableError:
        return report_lock_unavailable(script_name, started, lock_name)
