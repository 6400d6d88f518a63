# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path

from automoderator.discord import is_webhook_url, log_server_action, send_discord_webhook, send_task_report
from automoderator.env import get_bool_env, get_env, get_int_env, load_dotenv
from automoderator.files import read_json, read_jsonl
from automoderator.jobs import JsonJobQueue
from automoderator.logging_setup import configure_root_logging
from automoderator.paths import LOG_DIR, ensure_dir
from automoderator.policy import Policy, PolicyError
from automoderator.settings import RuntimeSettings
from automoderator.task_control import kill_switch_enabled, maintenance_mode_enabled

LOGGER = logging.getLogger(__name__)
SCRIPT_NAME = "doctor.py"


def _check_writable(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8"):
            pass
        return True
    except OSError:
        return False


def _format_lines(lines: list[str], fallback: str = "None") -> str:
    if not lines:
        return fallback
    return "\n".join(f"- {line}" for line in lines[:12])


class DoctorReport:
    def __init__(self) -> None:
        self.ok: list[str] = []
        self.warnings: list[str] = []
        self.critical: list[str] = []

    @property
    def level(self) -> str:
        if self.critical:
            return "CRITICAL"
        return "WARNING" if self.warnings else "SUCCESS"

    def add(self, name: str, ok: bool, *, detail: str, severity: str = "warning") -> None:
        if ok:
            self.ok.append(f"{name}: {detail}")
            level = "SUCCESS"
        elif severity == "critical":
            self.critical.append(f"{name}: {detail}")
            level = "ERROR"
        else:
            self.warnings.append(f"{name}: {detail}")
            level = "WARNING"
        log_server_action(
            "doctor_check",
            script_name=SCRIPT_NAME,
            level=level,
            context={"check": name, "ok": ok, "detail": detail[:220], "severity": severity},
        )


def run_checks(queue: JsonJobQueue | None = None) -> tuple[DoctorReport, int]:
    report = DoctorReport()

    for key, required in (
        ("DISCORD_WEBHOOK_MAIN", True),
        ("DISCORD_WEBHOOK_SERVER_LOGS", False),
        ("DISCORD_WEBHOOK_ERRORS", False),
        ("DISCORD_WEBHOOK_REVERTS", False),
    ):
        raw = get_env(key)
        valid = is_webhook_url(raw)
        if required:
            report.add(key, valid, detail="valid webhook" if valid else "missing or invalid", severity="critical")
        else:
            report.add(key, valid or not raw, detail="configured" if valid else "not set (optional)")

    try:
        policy = Policy.from_env()
    except PolicyError as exc:
        report.add("POLICY", False, detail=str(exc), severity="critical")
    else:
        report.add(
            "POLICY",
            True,
            detail=(
                f"enabled={int(policy.enabled)}, threshold={policy.threshold}, "
                f"caution={policy.caution_level}, model={policy.model_name}"
            ),
        )

    settings = RuntimeSettings.from_env()
    report.add(
        "AUTOMOD_LIFTWING_BASE_URL",
        settings.liftwing_base_url.startswith(("https://", "http://")) and settings.liftwing_base_url.endswith("/"),
        detail=settings.liftwing_base_url,
        severity="critical",
    )
    report.add("AUTOMOD_DRY_RUN", not settings.dry_run, detail="dry run active" if settings.dry_run else "live")
    report.add("KILL_SWITCH", not kill_switch_enabled(), detail="active" if kill_switch_enabled() else "off")
    report.add("MAINTENANCE", not maintenance_mode_enabled(), detail="active" if maintenance_mode_enabled() else "off")

    task_reports_file = Path(get_env("TASK_REPORTS_FILE") or str(LOG_DIR / "task_reports.jsonl"))
    server_actions_file = Path(get_env("SERVER_ACTIONS_FILE") or str(LOG_DIR / "server_actions.jsonl"))
    report.add("LOG_DIR", LOG_DIR.exists() and LOG_DIR.is_dir(), detail=str(LOG_DIR), severity="critical")
    report.add("TASK_REPORTS_FILE", _check_writable(task_reports_file), detail=str(task_reports_file))
    report.add("SERVER_ACTIONS_FILE", _check_writable(server_actions_file), detail=str(server_actions_file))

    discord_queue = read_json(LOG_DIR / "discord_queue.json", default=[])
    discord_depth = len(discord_queue) if isinstance(discord_queue, list) else 0
    warn_threshold = max(get_int_env("DOCTOR_QUEUE_WARNING_THRESHOLD", 50), 1)
    report.add("DISCORD_QUEUE_DEPTH", discord_depth < warn_threshold, detail=f"queue={discord_depth}, threshold={warn_threshold}")

    job_queue = queue or JsonJobQueue(max_attempts=settings.job_max_attempts)
    job_depth = len(job_queue)
    report.add("JOB_QUEUE_DEPTH", job_depth < warn_threshold, detail=f"queue={job_depth}, threshold={warn_threshold}")
    dead_letters = len(read_jsonl(job_queue.dead_letter_path))
    report.add("DEAD_LETTERS", dead_letters == 0, detail=f"{dead_letters} dead-lettered job(s)")
    return report, job_depth


def main(argv: list[str] | None = None) -> int:
    started = time.monotonic()
    load_dotenv()
    configure_root_logging(logger_name=SCRIPT_NAME)
    ensure_dir(LOG_DIR)
    log_server_action("doctor_start", script_name=SCRIPT_NAME, include_runtime=True)

    report, job_depth = run_checks()
    if get_bool_env("DOCTOR_SEND_TEST_MESSAGES", False):
        ping = "AutoModerator doctor ping"
        report.add("DISCORD_PING_MAIN", send_discord_webhook(content=ping), detail="main webhook test")
        report.add("DISCORD_PING_SERVER", send_discord_webhook(content=ping, channel="server"), detail="server webhook test")

    level = report.level
    color_map = {"SUCCESS": 5763719, "WARNING": 15105570, "CRITICAL": 15158332}
    embed = {
        "title": "AutoModerator doctor",
        "description": "Configuration, queue and Discord connectivity audit.",
        "color": color_map[level],
        "fields": [
            {"name": "Critical", "value": _format_lines(report.critical), "inline": False},
            {"name": "Warnings", "value": _format_lines(report.warnings), "inline": False},
            {"name": "OK", "value": _format_lines(report.ok), "inline": False},
            {
                "name": "Summary",
                "value": f"critical={len(report.critical)} | warning={len(report.warnings)} | jobs={job_depth}",
                "inline": False,
            },
        ],
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }
    sent = send_discord_webhook(embed=embed, level=level, channel="server")
    if not sent:
        LOGGER.warning("Doctor report could not be sent to Discord")

    duration = time.monotonic() - started
    send_task_report(
        script_name=SCRIPT_NAME,
        status="FAILED" if report.critical else ("WARNING" if report.warnings else "SUCCESS"),
        duration_seconds=duration,
        details=f"Doctor done: critical={len(report.critical)}, warning={len(report.warnings)}, jobs={job_depth}",
        stats={"critical": len(report.critical), "warning": len(report.warnings), "job_queue": job_depth, "discord_sent": int(sent)},
        level=level,
        channel="server",
    )
    log_server_action(
        "doctor_end",
        script_name=SCRIPT_NAME,
        level=level,
        context={"critical": len(report.critical), "warning": len(report.warnings), "duration_seconds": round(duration, 2)},
    )
    return 1 if report.critical else 0


if __name__ == "__main__":
    raise SystemExit(main())
