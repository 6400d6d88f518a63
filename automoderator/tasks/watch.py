# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any

from pywikibot.exceptions import Error as PywikibotError

from automoderator.discord import log_server_action, log_server_diagnostic, send_task_report
from automoderator.env import load_dotenv
from automoderator.files import read_json, write_json
from automoderator.logging_setup import configure_root_logging
from automoderator.mediawiki import context_from_change, fetch_recent_edits, parse_mw_timestamp
from automoderator.paths import CHECKPOINT_FILE
from automoderator.policy import PolicyError
from automoderator.service import RevertService
from automoderator.settings import RuntimeSettings
from automoderator.tasks.common import connect_service, run_guarded

LOGGER = logging.getLogger(__name__)
SCRIPT_NAME = "watch.py"
LOCK_NAME = "automoderator-watch"


def process_changes(
    service: RevertService,
    changes: list[dict[str, Any]],
    checkpoint: dict[str, Any],
) -> tuple[Counter[str], dict[str, Any]]:
    """Feed recent changes newer than `checkpoint` to the edit handler; returns stats and the new checkpoint."""
    stats: Counter[str] = Counter()
    last_revid = int(checkpoint.get("last_revid") or 0)
    new_checkpoint = dict(checkpoint)

    for change in changes:
        ctx = context_from_change(change)
        if ctx is None:
            stats["invalid"] += 1
            continue
        if ctx.rev_id <= last_revid:
            stats["already_seen"] += 1
            continue
        try:
            queued = service.handle_edit(ctx)
        except (PywikibotError, PolicyError, OSError) as exc:
            stats["errors"] += 1
            log_server_diagnostic(
                message=f"handle_edit failed for rev {ctx.rev_id}",
                level="ERROR",
                script_name=SCRIPT_NAME,
                context={"rev_id": ctx.rev_id, "title": ctx.page_title},
                exception=exc,
            )
            continue
        stats["queued" if queued else "skipped"] += 1
        if ctx.rev_id > int(new_checkpoint.get("last_revid") or 0):
            new_checkpoint["last_revid"] = ctx.rev_id
            new_checkpoint["last_timestamp"] = str(change.get("timestamp") or new_checkpoint.get("last_timestamp") or "")
    return stats, new_checkpoint


def _run(started: float) -> int:
    settings = RuntimeSettings.from_env()
    site, service = connect_service(settings)
    if not service.policy.enabled:
        LOGGER.info("Revision checks are disabled on %s, nothing to watch", site)
        log_server_action("watch_disabled", script_name=SCRIPT_NAME, level="INFO")
        return 0

    checkpoint = read_json(CHECKPOINT_FILE, default={})
    if not isinstance(checkpoint, dict):
        checkpoint = {}
    since = parse_mw_timestamp(checkpoint.get("last_timestamp"))
    changes = fetch_recent_edits(site, since=since, limit=settings.rc_limit)
    log_server_action(
        "run_start",
        script_name=SCRIPT_NAME,
        include_runtime=True,
        context={"changes": len(changes), "checkpoint_revid": checkpoint.get("last_revid", 0), "threshold": service.policy.threshold},
    )

    stats, new_checkpoint = process_changes(service, changes, checkpoint)
    write_json(CHECKPOINT_FILE, new_checkpoint)

    duration = time.monotonic() - started
    send_task_report(
        script_name=SCRIPT_NAME,
        status="WARNING" if stats["errors"] else "SUCCESS",
        duration_seconds=duration,
        stats={"changes": len(changes), **dict(stats)},
        details=f"{stats['queued']} revision(s) queued for scoring",
        channel="server",
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    configure_root_logging(logger_name=SCRIPT_NAME)
    return run_guarded(SCRIPT_NAME, LOCK_NAME, _run)


if __name__ == "__main__":
    raise SystemExit(main())
