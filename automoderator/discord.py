# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
import os
import platform
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

import requests

from .env import get_bool_env, get_env, get_int_env
from .files import append_jsonl
from .paths import LOG_DIR

LOGGER = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 2000
MAX_EMBED_DESCRIPTION = 4096
MAX_EMBED_TITLE = 256
MAX_EMBED_FIELDS = 25
MAX_FIELD_NAME = 256
MAX_FIELD_VALUE = 1024
WEBHOOK_PREFIXES = (
    "https://discord.com/api/webhooks/",
    "https://ptb.discord.com/api/webhooks/",
    "https://canary.discord.com/api/webhooks/",
)
LEVEL_COLORS = {
    "DEBUG": 9807270,
    "INFO": 3447003,
    "SUCCESS": 5763719,
    "WARNING": 15105570,
    "ERROR": 15158332,
    "CRITICAL": 10038562,
    "FAILED": 15158332,
}
LEVEL_RANK = {"DEBUG": 0, "INFO": 1, "SUCCESS": 1, "WARNING": 2, "ERROR": 3, "CRITICAL": 4}
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _truncate(value: object, max_size: int) -> str:
    return str(value if value is not None else "")[:max_size]


def is_webhook_url(value: str | None) -> bool:
    if not value:
        return False
    return value.strip().lower().startswith(WEBHOOK_PREFIXES)


def _clean_webhook(raw_value: str | None, field_name: str) -> str | None:
    value = (raw_value or "").strip()
    if not value:
        return None
    if not is_webhook_url(value):
        LOGGER.warning("%s is not a valid Discord webhook URL and will be ignored", field_name)
        return None
    return value


def _server_actions_file() -> Path:
    return Path(get_env("SERVER_ACTIONS_FILE") or str(LOG_DIR / "server_actions.jsonl"))


def _task_reports_file() -> Path:
    return Path(get_env("TASK_REPORTS_FILE") or str(LOG_DIR / "task_reports.jsonl"))


class DiscordNotifier:
    def __init__(self) -> None:
        self.main = _clean_webhook(get_env("DISCORD_WEBHOOK_MAIN"), "DISCORD_WEBHOOK_MAIN")
        self.errors = _clean_webhook(get_env("DISCORD_WEBHOOK_ERRORS"), "DISCORD_WEBHOOK_ERRORS")
        self.server = _clean_webhook(get_env("DISCORD_WEBHOOK_SERVER_LOGS"), "DISCORD_WEBHOOK_SERVER_LOGS")
        self.reverts = _clean_webhook(get_env("DISCORD_WEBHOOK_REVERTS"), "DISCORD_WEBHOOK_REVERTS")
        self.request_timeout = max(get_int_env("DISCORD_TIMEOUT_SECONDS", 12), 3)
        self.max_retries = max(get_int_env("DISCORD_MAX_RETRIES", 3), 0)
        self.max_queue_size = max(get_int_env("DISCORD_MAX_QUEUE_SIZE", 200), 10)
        self.queue_file = Path(get_env("DISCORD_QUEUE_FILE") or str(LOG_DIR / "discord_queue.json"))
        self._lock = Lock()

    @property
    def configured(self) -> bool:
        return any((self.main, self.errors, self.server, self.reverts))

    def _pick_webhook(self, level: str, channel: str | None) -> str | None:
        normalized = (level or "INFO").upper()
        if channel == "server" and self.server:
            return self.server
        if channel == "reverts" and self.reverts:
            return self.reverts
        if normalized in {"ERROR", "CRITICAL"} and self.errors:
            return self.errors
        return self.main or self.errors or self.server

    def _load_queue(self) -> list[dict[str, Any]]:
        if not self.queue_file.exists():
            return []
        try:
            payload = json.loads(self.queue_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Unable to read Discord queue file: %s", self.queue_file)
            return []
        return [item for item in payload if isinstance(item, dict)] if isinstance(payload, list) else []

    def _save_queue(self, queue: list[dict[str, Any]]) -> None:
        try:
            self.queue_file.parent.mkdir(parents=True, exist_ok=True)
            self.queue_file.write_text(
                json.dumps(queue[-self.max_queue_size :], ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            LOGGER.warning("Unable to save Discord queue file: %s", exc)

    def _send_payload(self, webhook: str, payload: dict[str, Any]) -> tuple[bool, str]:
        last_error = "unknown_error"
        for attempt in range(self.max_retries + 1):
            try:
                response = requests.post(webhook, json=payload, timeout=self.request_timeout)
            except requests.RequestException as exc:
                last_error = f"request_error: {exc}"
                if attempt < self.max_retries:
                    time.sleep(min(1.5**attempt, 8.0))
                    continue
                return False, last_error

            if 200 <= response.status_code < 300:
                return True, ""

            last_error = f"http_{response.status_code}: {_truncate((response.text or '').replace(chr(10), ' '), 300)}"
            if response.status_code in RETRYABLE_STATUSES and attempt < self.max_retries:
                time.sleep(min(1.5**attempt, 8.0))
                continue
            return False, last_error
        return False, last_error

    def flush_queue(self, max_items: int = 30) -> int:
        sent = 0
        with self._lock:
            queue = self._load_queue()
            if not queue:
                return 0
            remaining: list[dict[str, Any]] = []
            for index, item in enumerate(queue):
                if index >= max_items:
                    remaining.extend(queue[index:])
                    break
                webhook = item.get("webhook")
                payload = item.get("payload")
                if not isinstance(webhook, str) or not isinstance(payload, dict):
                    continue
                ok, _error = self._send_payload(webhook, payload)
                if ok:
                    sent += 1
                else:
                    remaining.append(item)
            self._save_queue(remaining)
        if sent:
            LOGGER.info("Flushed %s queued Discord message(s)", sent)
        return sent

    def send(
        self,
        content: str | None = None,
        embed: dict[str, Any] | None = None,
        level: str = "INFO",
        channel: str | None = None,
    ) -> bool:
        webhook = self._pick_webhook(level, channel)
        if not webhook:
            LOGGER.debug("No Discord webhook configured for %s/%s", channel or "main", level)
            return False

        payload: dict[str, Any] = {}
        if content:
            payload["content"] = _truncate(content, MAX_CONTENT_LENGTH)
        if embed:
            payload["embeds"] = [embed]
        if not payload:
            return False

        self.flush_queue(max_items=10)
        ok, error = self._send_payload(webhook, payload)
        if ok:
            return True

        LOGGER.warning("Discord webhook failed (%s): %s", level, error)
        with self._lock:
            queue = self._load_queue()
            queue.append({"queued_at": _utc_now_iso(), "webhook": webhook, "payload": payload, "error": error[:500]})
            self._save_queue(queue)
        return False


_NOTIFIER: DiscordNotifier | None = None


def get_notifier() -> DiscordNotifier:
    global _NOTIFIER
    if _NOTIFIER is None:
        _NOTIFIER = DiscordNotifier()
    return _NOTIFIER


def reset_notifier() -> None:
    global _NOTIFIER
    _NOTIFIER = None


def _build_embed(title: str, description: str, level: str, fields: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "title": _truncate(title, MAX_EMBED_TITLE),
        "description": _truncate(description, MAX_EMBED_DESCRIPTION),
        "color": LEVEL_COLORS.get(level, LEVEL_COLORS["INFO"]),
        "timestamp": _utc_now_iso(),
    }
    if fields:
        embed["fields"] = [
            {
                "name": _truncate(field.get("name"), MAX_FIELD_NAME) or "Info",
                "value": _truncate(field.get("value"), MAX_FIELD_VALUE) or "-",
                "inline": bool(field.get("inline", True)),
            }
            for field in fields[:MAX_EMBED_FIELDS]
        ]
    return embed


def log_to_discord(message: str, level: str = "INFO", script_name: str | None = None, channel: str | None = None) -> bool:
    normalized = (level or "INFO").upper()
    embed = _build_embed(f"{script_name or 'automoderator'} | {normalized}", message, normalized)
    return get_notifier().send(embed=embed, level=normalized, channel=channel)


def send_discord_webhook(
    content: str | None = None,
    embed: dict[str, Any] | None = None,
    level: str = "INFO",
    channel: str | None = None,
) -> bool:
    return get_notifier().send(content=content, embed=embed, level=level, channel=channel)


def log_server_action(
    action: str,
    *,
    script_name: str,
    level: str = "INFO",
    context: dict[str, object] | None = None,
    include_runtime: bool = False,
) -> None:
    if not get_bool_env("SERVER_LOG_EVERY_ACTION", True):
        return
    normalized = (level or "INFO").upper()
    record: dict[str, Any] = {
        "ts": _utc_now_iso(),
        "action": action,
        "script_name": script_name,
        "level": normalized,
        "context": dict(context or {}),
    }
    if include_runtime:
        record["runtime"] = {"pid": os.getpid(), "python": platform.python_version(), "host": platform.node()}
    try:
        append_jsonl(_server_actions_file(), record)
    except OSError as exc:
        LOGGER.warning("Unable to write server action %s: %s", action, exc)

    if get_bool_env("SERVER_ACTION_LOG_TO_DISCORD", False) and LEVEL_RANK.get(normalized, 1) >= LEVEL_RANK["WARNING"]:
        fields = [{"name": str(key), "value": str(value)} for key, value in (context or {}).items()]
        get_notifier().send(embed=_build_embed(f"{script_name} | {action}", action, normalized, fields), level=normalized, channel="server")


def log_server_diagnostic(
    *,
    message: str,
    level: str = "ERROR",
    script_name: str,
    context: dict[str, object] | None = None,
    exception: BaseException | None = None,
) -> None:
    details: dict[str, object] = {"message": message, **(context or {})}
    if exception is not None:
        details["exception_type"] = type(exception).__name__
        details["exception"] = str(exception)[:500]
        details["traceback"] = "".join(
            traceback.format_exception(type(exception), exception, exception.__traceback__)
        )[-3000:]
    LOGGER.log(logging.ERROR if level.upper() in {"ERROR", "CRITICAL"} else logging.WARNING, "%s: %s", script_name, message)
    log_server_action("diagnostic", script_name=script_name, level=level, context=details)


def send_task_report(
    script_name: str,
    status: str,
    duration_seconds: float | None = None,
    stats: dict[str, object] | None = None,
    details: str | None = None,
    level: str | None = None,
    channel: str | None = None,
) -> bool:
    normalized_status = (status or "INFO").upper()
    inferred_level = (level or ("ERROR" if normalized_status in {"ERROR", "FAILED"} else "INFO")).upper()
    try:
        append_jsonl(
            _task_reports_file(),
            {
                "ts": _utc_now_iso(),
                "script_name": script_name,
                "status": normalized_status,
                "duration_seconds": round(duration_seconds, 3) if duration_seconds is not None else None,
                "stats": dict(stats or {}),
                "details": details or "",
            },
        )
    except OSError as exc:
        LOGGER.warning("Unable to write task report for %s: %s", script_name, exc)

    fields: list[dict[str, Any]] = []
    if duration_seconds is not None:
        fields.append({"name": "Duration", "value": f"{duration_seconds:.1f}s"})
    for key, value in list((stats or {}).items())[:10]:
        fields.append({"name": key, "value": value})
    embed = _build_embed(
        f"{script_name} | RUN {normalized_status}",
        details or "Automatic report",
        normalized_status if normalized_status in LEVEL_COLORS else inferred_level,
        fields,
    )
    return get_notifier().send(embed=embed, level=inferred_level, channel=channel)


def flush_logs() -> None:
    get_notifier().flush_queue(max_items=200)
