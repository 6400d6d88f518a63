#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations

import argparse
import time

from automoderator.discord import log_server_action, log_server_diagnostic, send_task_report
from automoderator.env import load_dotenv
from automoderator.logging_setup import configure_root_logging
from automoderator.tasks import check_revision, doctor, watch, worker

TASKS = {
    "watch": watch.main,
    "worker": worker.main,
    "check-revision": check_revision.main,
    "doctor": doctor.main,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run an AutoModerator task")
    parser.add_argument("task", choices=sorted(TASKS.keys()), help="Task name to run")
    args, task_args = parser.parse_known_args(argv)
    task_name = args.task
    started = time.monotonic()
    load_dotenv()
    configure_root_logging(logger_name="run_bot.py")
    try:
        exit_code = int(TASKS[task_name](task_args))
    except Exception as exc:
        duration = time.monotonic() - started
        log_server_action(
            "task_runner_exception",
            script_name="run_bot.py",
            level="CRITICAL",
            include_runtime=True,
            context={"task": task_name, "error": str(exc)[:300]},
        )
        log_server_diagnostic(
            message=f"run_bot failed on task {task_name}",
            level="CRITICAL",
            script_name="run_bot.py",
            context={"task": task_name},
            exception=exc,
        )
        send_task_report(
            script_name="run_bot.py",
            status="FAILED",
            duration_seconds=duration,
            details=f"Task {task_name} crashed: {exc}",
            stats={"task": task_name},
            level="CRITICAL",
            channel="server",
        )
        return 1

    duration = time.monotonic() - started
    if exit_code != 0:
        log_server_action(
            "task_runner_non_zero_exit",
            script_name="run_bot.py",
            level="WARNING",
            context={"task": task_name, "exit_code": exit_code, "duration_seconds": round(duration, 2)},
        )
        send_task_report(
            script_name="run_bot.py",
            status="WARNING",
            duration_seconds=duration,
            details=f"Task {task_name} exited with code {exit_code}",
            stats={"task": task_name, "exit_code": exit_code},
            level="WARNING",
            channel="server",
        )
    else:
        log_server_action(
            "task_runner_success",
            script_name="run_bot.py",
            level="SUCCESS",
            context={"task": task_name, "duration_seconds": round(duration, 2)},
        )
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
