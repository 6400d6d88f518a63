# -*- coding: utf-8 -*-
from __future__ import annotations

import time
from typing import Any

from .discord import log_server_action, send_task_report
from .env import get_bool_env
from .paths import KILL_SWITCH_FILE, MAINTENANCE_FILE


def dry_run_enabled() -> bool:
    return get_bool_env("AUTOMOD_DRY_RUN", False)


class RunPausedError(RuntimeError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def kill_switch_enabled() -> bool:
    return KILL_SWITCH_FILE.exists()


def maintenance_mode_enabled() -> bool:
    return MAINTENANCE_FILE.exists()


def ensure_runtime_allowed(script_name: str) -> None:
    if kill_switch_enabled():
        raise RunPausedError(f"{script_name}: kill switch active")
    if maintenance_mode_enabled() and not get_bool_env("AUTOMOD_ALLOW_DURING_MAINTENANCE", False):
        raise RunPausedError(f"{script_name}: maintenance mode active")


def save_page_or_dry_run(
    page: Any,
    *,
    script_name: str,
    summary: str,
    minor: bool,
    bot: bool,
    context: dict[str, object] | None = None,
) -> bool:
    if dry_run_enabled():
        log_server_action(
            "dry_run_skip_save",
            script_name=script_name,
            level="WARNING",
            context={"title": str(getattr(page, "title", lambda: "")()), "summary": summary[:220], **(context or {})},
        )
        return False
    page.save(summary=summary, minor=minor, bot=bot)
    return True


def report_lock_unavailable(script_name: str, started_monotonic: float, lock_name: str) -> int:
    duration = max(0.0, time.monotonic() - started_monotonic)
    log_server_action(
        "run_skipped_lock_held",
        script_name=script_name,
        level="WARNING",
        context={"lock_name": lock_name, "duration_seconds": round(duration, 3)},
    )
    send_task_report(
        script_name=script_name,
        status="WARNING",
        duration_seconds=duration,
        details=f"Run skipped: lock '{lock_name}' already held.",
        stats={"reason": "lock_held", "lock_name": lock_name},
        level="WARNING",
    )
    return 0


def report_run_paused(script_name: str, started_monotonic: float, reason: str) -> int:
    duration = max(0.0, time.monotonic() - started_monotonic)
    log_server_action("run_paused", script_name=script_name, level="WARNING", context={"reason": reason})
    send_task_report(
        script_name=script_name,
        status="WARNING",
        duration_seconds=duration,
        details=f"Run paused: {reason}",
        stats={"reason": "paused"},
        level="WARNING",
    )
    return 0
