# -*- coding: utf-8 -*-
from __future__ import annotations

import argparse
import logging

from automoderator.decision import RevertDecisionEngine
from automoderator.discord import log_server_action
from automoderator.env import load_dotenv
from automoderator.liftwing import FixedScoreClient, dump_score
from automoderator.logging_setup import configure_root_logging
from automoderator.mediawiki import SitePageUpdater
from automoderator.models import MalformedScoreError, RevisionContext
from automoderator.precheck import passes_precheck
from automoderator.service import RevertService, ScoreClient
from automoderator.settings import RuntimeSettings
from automoderator.tasks.common import connect_service, run_guarded

LOGGER = logging.getLogger(__name__)
SCRIPT_NAME = "check_revision.py"
LOCK_NAME = "automoderator-check-revision"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_bot.py check-revision",
        description="Check a revision and report whether it would be reverted.",
    )
    parser.add_argument("--revid", type=int, required=True, help="Revision id to check")
    parser.add_argument(
        "--client",
        choices=("liftwing", "testpass", "testfail"),
        default="liftwing",
        help="Score source: the live model or a fixed passing/failing score",
    )
    parser.add_argument("--enforce", action="store_true", help="Actually revert and tag instead of reporting")
    return parser


def pick_scorer(service: RevertService, client: str) -> ScoreClient:
    if client == "testpass":
        return FixedScoreClient(0.0, model=service.active_model, wiki_db=service.wiki_id)
    if client == "testfail":
        return FixedScoreClient(1.0, model=service.active_model, wiki_db=service.wiki_id)
    return service.scorer


def check_revision(service: RevertService, ctx: RevisionContext, scorer: ScoreClient, *, enforce: bool) -> str:
    """Run one revision through pre-check, scoring and the decision engine; returns the report text."""
    check = passes_precheck(ctx, service.policy, service.actor, service.users, service.history, service.pages)
    if not check:
        return f"precheck skipped rev:\t{ctx.rev_id}\t({check.reason})"

    result = scorer.fetch_score(ctx.rev_id, model=service.active_model)
    if not result.ok or result.score is None:
        return f"Revision ID:\t{ctx.rev_id}\nScore fetch failed:\t{result.error} (allow_retries={result.allow_retries})"

    engine = service.engine
    if not enforce:
        engine = RevertDecisionEngine(
            service.engine.page_updater,
            service.engine.tag_store,
            service.policy,
            service.actor,
            merge=service.engine.merge,
            dry_run=True,
        )
    try:
        decision = engine.maybe_revert(ctx, result.score)
    except MalformedScoreError as exc:
        return f"Revision ID:\t{ctx.rev_id}\nMalformed score:\t{exc}"

    would_revert = decision.outcome == "reverted"
    status = decision.reason or decision.outcome
    return (
        f"Revision ID:\t{ctx.rev_id}\n"
        f"Would revert?\t{int(would_revert)}: {status}\n"
        f"Probability:\t{decision.probability} (threshold {service.policy.threshold})\n"
        f"Score:\t{dump_score(result.score)}"
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.revid <= 0:
        print("'revid' must be greater than zero")
        return 2
    load_dotenv()
    configure_root_logging(logger_name=SCRIPT_NAME)

    def _run(_started: float) -> int:
        settings = RuntimeSettings.from_env()
        site, service = connect_service(settings)
        ctx = SitePageUpdater(site).load_context(args.revid)
        if ctx is None:
            print(f"Revision {args.revid} or its author could not be loaded")
            return 1
        report = check_revision(service, ctx, pick_scorer(service, args.client), enforce=args.enforce)
        print(report)
        log_server_action(
            "check_revision",
            script_name=SCRIPT_NAME,
            context={"rev_id": args.revid, "client": args.client, "enforce": int(args.enforce)},
        )
        return 0

    return run_guarded(SCRIPT_NAME, LOCK_NAME, _run)


if __name__ == "__main__":
    raise SystemExit(main())
