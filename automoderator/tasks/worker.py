# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import time
from collections import Counter

from automoderator.discord import log_server_action, log_server_diagnostic, send_task_report
from automoderator.env import get_int_env, load_dotenv
from automoderator.jobs import JobResult, JsonJobQueue
from automoderator.logging_setup import configure_root_logging
from automoderator.service import RevertService
from automoderator.settings import RuntimeSettings
from automoderator.tasks.common import connect_service, run_guarded

LOGGER = logging.getLogger(__name__)
SCRIPT_NAME = "worker.py"
LOCK_NAME = "automoderator-worker"


def drain_queue(service: RevertService, queue: JsonJobQueue, max_jobs: int) -> Counter[str]:
    """Run up to `max_jobs` queued jobs, requeueing retryable failures and dead-lettering the rest."""
    stats: Counter[str] = Counter()
    for _ in range(max(max_jobs, 0)):
        job = queue.pop()
        if job is None:
            break
        stats["jobs"] += 1
        try:
            result = service.run_job(job)
        except Exception as exc:
            # the popped job is requeued or dead-lettered whatever it raised
            log_server_diagnostic(
                message=f"{job.key} crashed",
                level="ERROR",
                script_name=SCRIPT_NAME,
                context={"job": job.key, "attempts": job.attempts},
                exception=exc,
            )
            result = JobResult(ok=False, allow_retries=True, error=f"{type(exc).__name__}: {exc}")

        if result.ok:
            stats["ok"] += 1
            continue
        if result.allow_retries and queue.retry(job, result.error):
            stats["retried"] += 1
        else:
            if not result.allow_retries:
                queue.dead_letter(job, result.error)
            stats["dead_lettered"] += 1
        log_server_action(
            "job_failed",
            script_name=SCRIPT_NAME,
            level="WARNING",
            context={"job": job.key, "attempts": job.attempts + 1, "allow_retries": result.allow_retries, "error": result.error[:300]},
        )
    return stats


def _run(started: float) -> int:
    settings = RuntimeSettings.from_env()
    _site, service = connect_service(settings)
    max_jobs = max(get_int_env("AUTOMOD_WORKER_MAX_JOBS", 50), 1)
    stats = drain_queue(service, service.queue, max_jobs)

    duration = time.monotonic() - started
    send_task_report(
        script_name=SCRIPT_NAME,
        status="WARNING" if stats["dead_lettered"] else "SUCCESS",
        duration_seconds=duration,
        stats=dict(stats),
        details=f"{stats['jobs']} job(s) processed, {len(service.queue)} left in queue",
        channel="server",
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    configure_root_logging(logger_name=SCRIPT_NAME)
    return run_guarded(SCRIPT_NAME, LOCK_NAME, _run)


if __name__ == "__main__":
    raise SystemExit(main())
